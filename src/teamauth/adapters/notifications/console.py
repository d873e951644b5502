"""Console-based notifier for demo/dev mode.

Prints verification, invite and reset links to stdout so developers can
click them directly.
"""

from teamauth.core.auth.notifications import Notifier, NotificationType, TokenNotification

LINK_PATHS = {
    NotificationType.VERIFY: "/verify",
    NotificationType.INVITE: "/invite",
    NotificationType.RESET: "/reset",
}


class ConsoleNotifier:
    """Console-based notifications for demo/dev mode.

    Instead of sending an email, prints the link to the console. This is
    useful for:
    - Local development without an email service
    - Demo environments
    """

    def __init__(self, ui_server_url: str) -> None:
        """Initialize the console notifier.

        Args:
            ui_server_url: Base URL of the UI for building links.
        """
        self._ui_server_url = ui_server_url.rstrip("/")

    def link_for(self, notification: TokenNotification) -> str:
        """Build the UI link that redeems the notification's token."""
        path = LINK_PATHS[notification.type]
        return f"{self._ui_server_url}{path}?token={notification.token}"

    async def send(self, notification: TokenNotification) -> bool:
        """Print the notification link to the console.

        Returns:
            True (console printing always succeeds).
        """
        label = notification.type.value.upper()
        print("\n" + "=" * 70, flush=True)
        print(f"[{label}] Link generated for demo/dev mode", flush=True)
        print(f"  Email: {notification.email}", flush=True)
        print(f"  Link:  {self.link_for(notification)}", flush=True)
        print("=" * 70 + "\n", flush=True)
        return True


# Verify we implement the protocol
_notifier: Notifier = ConsoleNotifier(ui_server_url="")
