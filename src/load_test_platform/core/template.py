import re
from typing import Any, Dict, Mapping, Set

from load_test_platform.core.errors import TemplateError

# {vu} / {iter} / {base_url}；JSON 文本里的 {"a": 1} 不会匹配
PLACEHOLDER = re.compile(r"\{(\w+)\}")

BUILTIN_VARIABLES = ("vu", "iter", "iteration")


def build_variables(vu_id: int, iteration: int, user_vars: Mapping[str, Any]) -> Dict[str, Any]:
    """组装模板变量，内置变量优先于用户变量"""
    variables = dict(user_vars)
    variables.update({"vu": vu_id, "iter": iteration, "iteration": iteration})
    return variables


def render(template: Any, variables: Mapping[str, Any]) -> Any:
    """
    递归渲染模板（字符串 / dict / list）

    整个字符串只有一个占位符时保留变量的原始类型，
    否则按字符串拼接。
    """
    if isinstance(template, str):
        whole = PLACEHOLDER.fullmatch(template)
        if whole:
            return _lookup(whole.group(1), variables)

        def replacer(match):
            return str(_lookup(match.group(1), variables))

        return PLACEHOLDER.sub(replacer, template)
    elif isinstance(template, dict):
        return {k: render(v, variables) for k, v in template.items()}
    elif isinstance(template, list):
        return [render(item, variables) for item in template]
    return template


def find_placeholders(template: Any) -> Set[str]:
    """收集模板中引用的全部变量名"""
    if isinstance(template, str):
        return set(PLACEHOLDER.findall(template))
    elif isinstance(template, dict):
        found: Set[str] = set()
        for v in template.values():
            found |= find_placeholders(v)
        return found
    elif isinstance(template, list):
        found = set()
        for item in template:
            found |= find_placeholders(item)
        return found
    return set()


def _lookup(name: str, variables: Mapping[str, Any]) -> Any:
    try:
        return variables[name]
    except KeyError:
        raise TemplateError(f"Undefined template variable: {{{name}}}") from None
