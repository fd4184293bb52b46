"""Detection of OAuth device-authorization prompts in command output.

``faber stack create`` may pause mid-command and print::

    1. Open: https://github.com/login/device
    2. Enter code: ABCD-1234

and then wait until a human has authorised the code. The detector looks for
both labelled lines in the accumulated output. Either one alone is a normal
transient state while output is still streaming in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .config import DEFAULT_DEVICE_FLOW_HOST


@dataclass(frozen=True)
class PromptInfo:
    """Verification URL and user code of a device-authorization prompt."""

    verification_uri: str
    user_code: str

    def to_dict(self) -> dict[str, str]:
        return {"verification_uri": self.verification_uri, "user_code": self.user_code}


class DeviceFlowDetector:
    """Find a device-authorization prompt in accumulated output.

    ``provider_host`` is a regular expression for the host part of the
    verification URL. Labels match case-insensitively; the user code is
    matched case-sensitively.
    """

    def __init__(self, provider_host: str = DEFAULT_DEVICE_FLOW_HOST):
        self.provider_host = provider_host
        self._uri_re = re.compile(
            rf"(?i:open):\s+(https://(?:{provider_host})/login/device)(?![\w/-])"
        )
        self._code_re = re.compile(
            r"(?i:enter\s+code):\s+([A-Z0-9]{4}-[A-Z0-9]{4})(?![A-Za-z0-9-])"
        )

    def scan(self, text: str) -> PromptInfo | None:
        """Return the prompt if both the URL and the code are present."""
        uri_match = self._uri_re.search(text)
        if not uri_match:
            return None
        code_match = self._code_re.search(text)
        if not code_match:
            return None
        return PromptInfo(verification_uri=uri_match.group(1), user_code=code_match.group(1))


def parse_device_flow(
    stdout: str, stderr: str, provider_host: str = DEFAULT_DEVICE_FLOW_HOST
) -> PromptInfo | None:
    """Scan finished output of a command for a device-authorization prompt."""
    return DeviceFlowDetector(provider_host).scan(combined_output(stdout, stderr))


def combined_output(stdout: str, stderr: str) -> str:
    return f"{stdout}\n{stderr}"
