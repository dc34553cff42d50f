from extraction.models.domain import ExtractionInput
from extraction.prompts.templates import CATEGORIES, build_extraction_messages


def test_build_messages_structure_and_truncation():
    inp = ExtractionInput(
        article_url="https://blog.example.com/a",
        article_title="New Spirit Jersey",
        source_name="Park Blog",
        content="x" * 1200,
        max_chars=500,
    )

    msgs = build_extraction_messages(inp)

    assert [m["role"] for m in msgs] == ["system", "user"]
    assert "JSON" in msgs[0]["content"]
    assert CATEGORIES in msgs[0]["content"]
    assert "disneyland_ca" in msgs[0]["content"]
    user = msgs[1]["content"]
    assert "[Source] Park Blog" in user
    assert "[URL] https://blog.example.com/a" in user
    assert "[Title] New Spirit Jersey" in user
    assert user.endswith("x" * 500)
    assert "x" * 501 not in user
