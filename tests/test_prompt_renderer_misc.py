import prompt_renderer
from jinja2 import DictLoader, Environment
from pydantic import BaseModel


def test_render_prompt_with_custom_env(monkeypatch):
    env = Environment(
        loader=DictLoader({"greet.j2": "你好 {{ name }}"}), autoescape=False
    )
    monkeypatch.setattr(prompt_renderer, "_env", env)
    result = prompt_renderer.render_prompt("greet.j2", {"name": "林墨"})
    assert result == "你好 林墨"


class Person(BaseModel):
    name: str
    title: str | None = None


def test_tojson_keeps_cjk_and_drops_none(monkeypatch):
    env = Environment(
        loader=DictLoader({"obj.j2": "{{ person | tojson }}"}),
        autoescape=False,
    )
    env.filters["tojson"] = prompt_renderer._tojson
    monkeypatch.setattr(prompt_renderer, "_env", env)
    result = prompt_renderer.render_prompt("obj.j2", {"person": Person(name="林墨")})
    assert result == '{"name": "林墨"}'


def test_truncate_chars_filter():
    assert prompt_renderer._truncate_chars("一二三四五", 3) == "一二三..."
    assert prompt_renderer._truncate_chars("一二", 3) == "一二"
    assert prompt_renderer._truncate_chars(None, 3) == ""
