import pandas as pd
import json


def parse_excel(file):
    df = pd.read_excel(file)

    required_columns = [
        "prompt",
        "type",
        "choices(json)",
        "answer",
        "difficulty",
        "category",
    ]
    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        # Raise KeyError so upstream router can return a HTTP 400 with a helpful message
        raise KeyError(missing[0])

    questions = []

    def get_json_value(value):
        return json.loads(value) if pd.notna(value) and str(value).strip() else []

    def get_value(value, default=None):
        if not pd.notna(value):
            return default
        # numpy scalars -> plain python values
        return value.item() if hasattr(value, "item") else value

    for _, row in df.iterrows():
        q = {
            "prompt": get_value(row["prompt"], ""),
            "type": get_value(row["type"], ""),
            "choices": get_json_value(row["choices(json)"]),
            "answer_key": get_value(row["answer"]),
            "difficulty": get_value(row["difficulty"], "medium"),
            "category": get_value(row["category"], "aptitude"),
        }

        questions.append(q)

    return questions
