"""Send an email only after a human approves it out of band."""

from __future__ import annotations

from typing import Any, Callable

from mailgate.ipc.client import DaemonClient, DaemonProtocolError, DaemonUnreachableError
from mailgate.notify.approval import truncate_preview
from mailgate.settings import Settings
from mailgate.tools.base import BaseTool, ToolExecutionResult


class SendEmailTool(BaseTool):
    """Blocks on the approval daemon, then runs ``send_draft`` on approval.

    Anything other than an explicit ``approved`` status leaves the draft unsent.
    """

    name = "send_email_ato"
    description = (
        "Send an email with user approval via mobile push notification. "
        "Blocks until the user approves or rejects, up to 5 minutes."
    )

    def __init__(self, client: DaemonClient, send_draft: Callable[[str], Any]) -> None:
        self._client = client
        self._send_draft = send_draft

    @classmethod
    def from_settings(cls, settings: Settings, send_draft: Callable[[str], Any]) -> SendEmailTool:
        return cls(DaemonClient.from_settings(settings), send_draft)

    def execute(self, payload: dict[str, Any]) -> ToolExecutionResult:
        to = str(payload.get("to") or "").strip()
        subject = str(payload.get("subject") or "").strip()
        body = str(payload.get("body") or "")
        draft_id = str(payload.get("draft_id") or "").strip()
        if not to:
            return ToolExecutionResult(ok=False, output={"error": "Missing 'to' address"})
        if not draft_id:
            return ToolExecutionResult(ok=False, output={"error": "Missing 'draft_id'"})

        try:
            response = self._client.queue_email(to=to, subject=subject, body=body, draft_id=draft_id)
        except (DaemonUnreachableError, DaemonProtocolError) as exc:
            return ToolExecutionResult(ok=False, output={"error": str(exc), "sent": False})

        if not (response.get("success") is True and response.get("status") == "approved"):
            return ToolExecutionResult(
                ok=False,
                output={
                    "error": str(response.get("error") or "not approved"),
                    "status": response.get("status"),
                    "sent": False,
                },
            )

        try:
            self._send_draft(draft_id)
        except Exception as exc:  # noqa: BLE001
            return ToolExecutionResult(
                ok=False,
                output={"error": f"approved but sending failed: {exc}", "status": "approved", "sent": False},
            )
        return ToolExecutionResult(
            ok=True,
            output={
                "status": "sent",
                "message": "Email approved and sent",
                "to": to,
                "subject": subject,
                "body_preview": truncate_preview(body),
            },
        )
