"""Fixed placeholder content used in degraded mode and for empty plans."""

from manga_tutor.core.types import PLACEHOLDER_IMAGE_URL

PLACEHOLDER_MIN_PANELS = 20

PLACEHOLDER_STORY_ARC = {"phase_overview": "教育漫画"}

PLACEHOLDER_CHARACTERS = [
    {"name": "学び君", "role": "student"},
    {"name": "知識先生", "role": "teacher"},
]

MOCK_PANEL_OUTLINE = [
    ("導入", "「{question}」って何だろう？"),
    ("基礎説明", "基本的な概念を理解しよう"),
    ("詳細解説", "より詳しく見てみよう"),
    ("応用例", "実際の例で確認しよう"),
    ("まとめ", "理解できたかな？"),
]


def mock_panels(question: str) -> list[dict]:
    """Simulated panel list for a degraded run."""
    return [
        {
            "panel_id": index,
            "title": title,
            "description": description.format(question=question),
        }
        for index, (title, description) in enumerate(MOCK_PANEL_OUTLINE, start=1)
    ]


def mock_image_urls() -> list[str]:
    return [PLACEHOLDER_IMAGE_URL for _ in MOCK_PANEL_OUTLINE]


def placeholder_plan(image_urls: list[str]) -> dict:
    """Plan substituted when the remote planning phase produced nothing."""
    return {
        "total_panels": max(len(image_urls), PLACEHOLDER_MIN_PANELS),
        "story_arc": dict(PLACEHOLDER_STORY_ARC),
        "main_characters": [dict(c) for c in PLACEHOLDER_CHARACTERS],
        "generated_images": list(image_urls),
    }
