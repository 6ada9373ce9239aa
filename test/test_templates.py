"""模板渲染测试"""

import pytest

from core.errors import ConfigurationError
from core.templates import TemplateRenderer


def _renderer():
    return TemplateRenderer({
        "system": "Assistant for {{ username }}",
        "user": "[{{ user_id }}] {{ message }}",
    })


def test_render_user_includes_message_and_context():
    r = _renderer()
    assert r.render_user("what's up?", {"user_id": 42}) == "[42] what's up?"
    assert r.render_system({"username": "ann"}) == "Assistant for ann"


def test_message_key_is_reserved():
    r = _renderer()
    assert r.render_user("real", {"user_id": 1, "message": "spoofed"}) == "[1] real"


def test_missing_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        _renderer().render_system({})


def test_unknown_template_name():
    with pytest.raises(ConfigurationError):
        _renderer().render("footer", {})


def test_malformed_template_fails_at_load():
    with pytest.raises(ConfigurationError):
        TemplateRenderer({"system": "{% if %}", "user": "{{ message }}"})


def test_from_files(tmp_path):
    (tmp_path / "s.tmpl").write_text("sys {{ username }}", encoding="utf-8")
    (tmp_path / "u.tmpl").write_text("{{ message }}!", encoding="utf-8")
    r = TemplateRenderer.from_files(tmp_path / "s.tmpl", tmp_path / "u.tmpl")
    assert sorted(r.names()) == ["system", "user"]
    assert r.render_user("hi") == "hi!"


def test_from_files_missing(tmp_path):
    with pytest.raises(ConfigurationError):
        TemplateRenderer.from_files(tmp_path / "nope.tmpl", tmp_path / "u.tmpl")
