from engine.kinds import ActionKind
from engine.phrases import (
    ReplyClass,
    classify_reply,
    has_plural_marker,
    infer_index,
    infer_requested_action,
    mentions_project,
    mentions_tags,
    parse_bare_number,
    wants_overwrite_all,
    wants_replace,
)


def test_classify_reply_yes_no_in_both_languages():
    assert classify_reply("Yes") == ReplyClass.confirm
    assert classify_reply("Да!") == ReplyClass.confirm
    assert classify_reply("  ок ") == ReplyClass.confirm
    assert classify_reply("no") == ReplyClass.cancel
    assert classify_reply("не надо") == ReplyClass.cancel
    assert classify_reply("Отмена.") == ReplyClass.cancel


def test_classify_reply_edit_and_inconclusive():
    assert classify_reply("edit") == ReplyClass.edit
    assert classify_reply("edit the title") == ReplyClass.edit
    assert classify_reply("maybe later") is None
    assert classify_reply("") is None


def test_infer_index_variants():
    assert infer_index("#3") == 3
    assert infer_index("number 4 please") == 4
    assert infer_index("the 2nd one") == 2
    assert infer_index("mark the second one done") == 2
    assert infer_index("удали вторую задачу") == 2
    assert infer_index("3") == 3
    assert infer_index("buy milk") is None


def test_parse_bare_number_only_accepts_a_lone_number():
    assert parse_bare_number("2") == 2
    assert parse_bare_number(" 2. ") == 2
    assert parse_bare_number("2)") == 2
    assert parse_bare_number("2 apples") is None
    assert parse_bare_number("second") is None


def test_infer_requested_action():
    assert infer_requested_action("delete the report task") == ActionKind.move_to_deprecated
    assert infer_requested_action("удали задачу про отчет") == ActionKind.move_to_deprecated
    assert infer_requested_action("mark as done the report") == ActionKind.mark_done
    assert infer_requested_action("find the report") is None


def test_replace_and_overwrite_markers():
    assert wants_replace("замени теги на dev") is True
    assert wants_replace("replace tags with dev") is True
    assert wants_replace("добавь тег dev") is False
    assert wants_overwrite_all("перезаполни все поля") is True
    assert wants_overwrite_all("overwrite all fields") is True
    assert wants_overwrite_all("заполни поля") is False


def test_field_and_plural_markers():
    assert mentions_tags("добавь тег dev") is True
    assert mentions_tags("add tag dev") is True
    assert mentions_tags("set priority high") is False
    assert mentions_project("move it to project Bot") is True
    assert has_plural_marker("delete both of them") is True
    assert has_plural_marker("delete the report") is False
