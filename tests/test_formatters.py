from chat_widget.formatters import DEFAULT_TEMPLATES, AttachmentFormatter, TemplateRegistry, apply_template
from chat_widget.models import Attachment, AttachmentType, Role, Turn


def _code(data="print(1)", language="python"):
    return Attachment(type=AttachmentType.CODE, data=data, metadata={"language": language})


def _chart(data="data:image/png;base64,AAAA", title="Sales"):
    return Attachment(type=AttachmentType.CHART, data=data, metadata={"title": title})


def test_message_without_attachments_is_raw_text():
    formatter = AttachmentFormatter()
    turn = Turn(role=Role.USER, content="hello")
    assert formatter.format_message(turn) == {"role": "user", "content": "hello"}


def test_code_attachment_uses_fenced_block_after_text():
    formatter = AttachmentFormatter()
    turn = Turn(role=Role.USER, content="What does this do?", attachments=[_code()])
    assert formatter.format_content(turn) == "What does this do?\n\n```python\nprint(1)\n```"


def test_table_is_sent_verbatim_and_empty_text_is_skipped():
    formatter = AttachmentFormatter()
    table = Attachment(type=AttachmentType.TABLE, data="<table><tr><td>1</td></tr></table>")
    turn = Turn(role=Role.USER, content="", attachments=[table, _code()])
    assert formatter.format_content(turn) == "<table><tr><td>1</td></tr></table>\n\n```python\nprint(1)\n```"


def test_chart_with_code_becomes_ordered_parts_in_native_mode():
    formatter = AttachmentFormatter(native_images=True)
    chart = _chart()
    turn = Turn(role=Role.USER, content="Explain", attachments=[chart, _code()])

    parts = formatter.format_content(turn)

    assert parts == [
        {"type": "text", "text": "Explain"},
        {"type": "image_url", "image_url": {"url": chart.data}},
        {"type": "text", "text": "```python\nprint(1)\n```"},
    ]


def test_parts_omit_empty_text():
    formatter = AttachmentFormatter()
    parts = formatter.format_content(Turn(role=Role.USER, content="", attachments=[_chart()]))
    assert [part["type"] for part in parts] == ["image_url"]


def test_chart_renders_markdown_image_when_native_images_disabled():
    formatter = AttachmentFormatter(native_images=False)
    turn = Turn(role=Role.USER, content="See", attachments=[_chart(data="http://img/x.png")])
    assert formatter.format_content(turn) == "See\n\n![Sales](http://img/x.png)"


def test_substitution_inserts_values_literally():
    attachment = Attachment(
        type=AttachmentType.CODE,
        data=r"re.sub(r'(\d+)', r'\1', s) $& {{language}}",
        metadata={"language": r"py\g<0>"},
    )
    rendered = apply_template("```{{language}}\n{{data}}\n```", attachment)
    assert rendered == "```py\\g<0>\n" + attachment.data + "\n```"


def test_missing_metadata_substitutes_empty_string():
    attachment = Attachment(type=AttachmentType.CODE, data="x = 1")
    assert apply_template(DEFAULT_TEMPLATES["code"], attachment) == "```\nx = 1\n```"


def test_cleared_template_falls_back_to_raw_data():
    registry = TemplateRegistry()
    registry.clear("code")
    formatter = AttachmentFormatter(registry)
    assert formatter.render(_code()) == "print(1)"


def test_registered_templates_override_and_reset_restores_defaults():
    registry = TemplateRegistry()
    registry.register(AttachmentType.CODE, "[{{language}}] {{data}}")
    registry.register("table", lambda attachment: attachment.data.upper())
    formatter = AttachmentFormatter(registry)

    assert formatter.render(_code()) == "[python] print(1)"
    assert formatter.render(Attachment(type="table", data="<td>x</td>")) == "<TD>X</TD>"

    registry.reset()
    assert formatter.render(_code()) == "```python\nprint(1)\n```"


def test_registry_seeded_from_custom_defaults():
    registry = TemplateRegistry({"code": "CODE: {{data}}"})
    formatter = AttachmentFormatter(registry)
    assert formatter.render(_code()) == "CODE: print(1)"
    assert formatter.render(_chart(data="u")) == "u"


def test_untitled_chart_falls_back_to_default_alt_text():
    formatter = AttachmentFormatter(native_images=False)
    untitled = Attachment(type=AttachmentType.CHART, data="http://img/x.png", metadata={})

    assert formatter.render(untitled) == "![Chart](http://img/x.png)"
    assert formatter.render(_chart(data="http://img/x.png", title="Sales")) == "![Sales](http://img/x.png)"
    assert apply_template("{{title}}", untitled, {"title": "Fallback"}) == "Fallback"
