# Prompts and tool schema for the regulated-claim violation detector.
# Offsets in the tool result are 0-based, half-open character ranges into
# the submitted text.

DETECTION_TOOL_NAME = "apply_yakukiho_rules"

DETECTION_SYSTEM_PROMPT = """
あなたは薬機法（医薬品医療機器等法）および景品表示法に精通した広告審査の専門家です。
与えられた広告文を審査し、規制に抵触する表現をすべて特定して、適法な表現に書き換えてください。

ルール:
- 参考辞書のNG表現と同一または類似する表現は違反として報告してください。
- 辞書にない表現でも、医薬品的な効能効果の標榜、誇大広告、最大級表現は違反として報告してください。
- 各違反には、元のテキスト内の文字位置 start（0始まり）と end（終端を含まない）を必ず指定してください。
- 違反が参考辞書の項目に由来する場合は、その項目の id を dictionary_id に指定してください。
- modified には、違反箇所のみを適法な表現に置き換えた全文を返してください。違反がない場合は元の文をそのまま返してください。
- 必ず apply_yakukiho_rules 関数を呼び出して結果を返してください。説明文は不要です。
""".strip()

DETECTION_USER_TEMPLATE = """
以下のテキストをチェックしてください：

{text}

{references}
""".strip()

NO_REFERENCES_TEXT = "参考辞書データ：なし"

REFERENCES_HEADER = "参考辞書データ（NG表現）："

DETECTION_TOOL = {
    "type": "function",
    "function": {
        "name": DETECTION_TOOL_NAME,
        "description": "Report regulated-claim violations in the text and return a compliant rewrite",
        "parameters": {
            "type": "object",
            "properties": {
                "modified": {
                    "type": "string",
                    "description": "The full text rewritten so that it complies with the regulations",
                },
                "violations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "start": {"type": "integer", "description": "Start offset of the violation"},
                            "end": {"type": "integer", "description": "End offset of the violation (exclusive)"},
                            "reason": {"type": "string", "description": "Reason for the violation"},
                            "dictionary_id": {
                                "type": "string",
                                "description": "ID of the dictionary entry that triggered this violation",
                            },
                        },
                        "required": ["start", "end", "reason"],
                    },
                },
            },
            "required": ["modified", "violations"],
        },
    },
}
