# shellwatch/core/shells/nushell.py
from __future__ import annotations

from .base import ShellAdapter

HOOK = r'''# shellwatch: nushell integration. Append to config.nu:
#   shellwatch observer hook --shell nushell | save --append $nu.config-path
$env.SHELLWATCH_SESSION_ID = ($env.SHELLWATCH_SESSION_ID? | default $"nu_(random chars --length 12)")
$env.config = ($env.config | upsert hooks.pre_execution (
  ($env.config.hooks.pre_execution? | default []) | append {||
    if ($env.SHELLWATCH_OBSERVER_ENABLED? | is-not-empty) {
      ^shellwatch observer capture-start --shell nushell --cwd $env.PWD -- (commandline) | ignore
    }
  }
))
$env.config = ($env.config | upsert hooks.pre_prompt (
  ($env.config.hooks.pre_prompt? | default []) | append {||
    if ($env.SHELLWATCH_OBSERVER_ENABLED? | is-not-empty) {
      ^shellwatch observer capture-end --shell nushell ($env.LAST_EXIT_CODE? | default 0) | ignore
    }
  }
))
'''


class NushellAdapter(ShellAdapter):
    """pre_execution / pre_prompt hooks. capture-end is a no-op when nothing is pending."""

    shell_type = "nushell"

    def get_hook_script(self) -> str:
        return HOOK
