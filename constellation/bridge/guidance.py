"""Fallback guidance shown when the agent CLI cannot complete a request.

The text tells the user how to run the same request by hand from a terminal
in the workspace.

Template variables:

- ``error``      : str -- the failure message
- ``workspace``  : str -- absolute workspace path
- ``command``    : str -- the agent command line without the message
- ``message``    : str -- the user's original request
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence

import jinja2

DEFAULT_TEMPLATE = """\
**Agent CLI error**: {{ error }}

**Alternative options**:
- Open a terminal for direct access
- Navigate to: `cd {{ workspace }}`
- Run: `{{ command }}`
- Then type: "{{ message }}"

**Workspace**: {{ workspace }}
Make sure the agent CLI is installed and configured on the host.
"""

_env = jinja2.Environment(autoescape=False, keep_trailing_newline=True)  # noqa: S701


def render_guidance(
    *,
    error: str,
    workspace: str,
    message: str,
    agent_argv: Sequence[str],
    template: str = DEFAULT_TEMPLATE,
) -> str:
    # The manual command drops --print so the user lands in an interactive session.
    command = shlex.join(arg for arg in agent_argv if arg != "--print")
    return _env.from_string(template).render(
        error=error,
        workspace=workspace,
        command=command,
        message=message,
    )
