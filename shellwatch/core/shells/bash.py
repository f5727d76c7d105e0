# shellwatch/core/shells/bash.py
from __future__ import annotations

from .base import ShellAdapter

HOOK = r'''# shellwatch: bash integration. Source from ~/.bashrc:
#   eval "$(shellwatch observer hook --shell bash)"
if [ -n "$SHELLWATCH_OBSERVER_ENABLED" ] && [ -z "$__shellwatch_installed" ]; then
  __shellwatch_installed=1
  export SHELLWATCH_SESSION_ID="${SHELLWATCH_SESSION_ID:-bash_$$_$(date +%s)}"
  __shellwatch_in_cmd=0
  __shellwatch_in_prompt=0

  __shellwatch_preexec() {
    [ "$__shellwatch_in_cmd" = 1 ] && return
    # commands run from PROMPT_COMMAND are not user commands
    [ "$__shellwatch_in_prompt" = 1 ] && return
    case "$BASH_COMMAND" in
      __shellwatch_*|*"shellwatch observer"*) return ;;
    esac
    __shellwatch_in_cmd=1
    command shellwatch observer capture-start --shell bash --cwd "$PWD" -- "$BASH_COMMAND" >/dev/null 2>&1
  }

  __shellwatch_precmd() {
    if [ "$__shellwatch_in_cmd" = 1 ]; then
      command shellwatch observer capture-end --shell bash "$__shellwatch_rc" >/dev/null 2>&1
    fi
    __shellwatch_in_cmd=0
    __shellwatch_in_prompt=0
  }

  trap '__shellwatch_preexec' DEBUG
  PROMPT_COMMAND="__shellwatch_rc=\$?; __shellwatch_in_prompt=1; ${PROMPT_COMMAND:+$PROMPT_COMMAND; }__shellwatch_precmd"
fi
'''


class BashAdapter(ShellAdapter):
    """DEBUG trap marks the start of a command, PROMPT_COMMAND its end."""

    shell_type = "bash"

    def get_hook_script(self) -> str:
        return HOOK
