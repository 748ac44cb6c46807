"""
VariableManager - `{{name}}` interpolation over a workflow's variables.

`interpolate()` substitutes raw (dangerous) values and must only be used
right before a browser call. `redact()` substitutes public values and is
safe for logs and prompts. Unknown placeholders are left untouched.
"""

from typing import Dict, Iterable, List, Optional
import re

from browseflow.domain.models import Variable

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}")


class VariableManager:

    def __init__(self, variables: Optional[Iterable[Variable]] = None):
        self._variables: Dict[str, Variable] = {}
        for variable in variables or []:
            self._variables[variable.name] = variable

    def interpolate(self, text: str) -> str:
        return self._substitute(text, dangerous=True)

    def redact(self, text: str) -> str:
        return self._substitute(text, dangerous=False)

    def _substitute(self, text: str, dangerous: bool) -> str:
        def replace(match: "re.Match") -> str:
            variable = self._variables.get(match.group(1))
            if variable is None:
                return match.group(0)
            return variable.dangerous_value() if dangerous else variable.public_value()

        return _PLACEHOLDER.sub(replace, text)

    def contains_secrets(self, text: str) -> bool:
        """True if `text` references any secret variable."""
        return any(
            v.is_secret and f"{{{{{name}}}}}" in text
            for name, v in self._variables.items()
        )

    def set_variable(self, variable: Variable) -> None:
        self._variables[variable.name] = variable

    def get_variable(self, name: str) -> Optional[Variable]:
        return self._variables.get(name)

    def get_variables(self) -> List[Variable]:
        return list(self._variables.values())

    def get_variable_names(self) -> List[str]:
        return list(self._variables)

    def has_variable(self, name: str) -> bool:
        return name in self._variables

    def remove_variable(self, name: str) -> bool:
        return self._variables.pop(name, None) is not None

    def clear(self) -> None:
        self._variables.clear()

    def size(self) -> int:
        return len(self._variables)

    def __len__(self) -> int:
        return len(self._variables)
