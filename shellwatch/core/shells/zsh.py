# shellwatch/core/shells/zsh.py
from __future__ import annotations

from .base import ShellAdapter

HOOK = r'''# shellwatch: zsh integration. Source from ~/.zshrc:
#   eval "$(shellwatch observer hook --shell zsh)"
if [[ -n "$SHELLWATCH_OBSERVER_ENABLED" && -z "$__shellwatch_installed" ]]; then
  __shellwatch_installed=1
  export SHELLWATCH_SESSION_ID="${SHELLWATCH_SESSION_ID:-zsh_$$_$(date +%s)}"
  __shellwatch_in_cmd=0

  __shellwatch_preexec() {
    __shellwatch_in_cmd=1
    command shellwatch observer capture-start --shell zsh --cwd "$PWD" -- "$1" >/dev/null 2>&1
  }

  __shellwatch_precmd() {
    local rc=$?
    if [[ "$__shellwatch_in_cmd" == 1 ]]; then
      command shellwatch observer capture-end --shell zsh "$rc" >/dev/null 2>&1
    fi
    __shellwatch_in_cmd=0
  }

  # precmd must run first so $? is still the command's status
  preexec_functions+=(__shellwatch_preexec)
  precmd_functions=(__shellwatch_precmd $precmd_functions)
fi
'''


class ZshAdapter(ShellAdapter):
    shell_type = "zsh"

    def get_hook_script(self) -> str:
        return HOOK
