"""Notifications flowing from the materializer to the sink.

Learn: A notification is either a Chat message or the Disconnect
sentinel. The sentinel travels through the same queue as chat messages,
so everything enqueued before it is guaranteed to be consumed first —
no separate shutdown channel is needed.
"""

from typing import Union

from pydantic import BaseModel, ConfigDict

MODERATION_USERNAME = "<<MODERATION>>"


class Disconnect(BaseModel):
    """Terminal sentinel — the sink stops after consuming it."""
    model_config = ConfigDict(frozen=True)

    def __repr__(self) -> str:
        return "DISCONNECT"


class Chat(BaseModel):
    """One outbound chat line."""
    model_config = ConfigDict(frozen=True)

    username: str
    content: str

    @classmethod
    def tagged(cls, username: str, tag: str, content: str) -> "Chat":
        """Chat line with a "[tag]" after the username (empire / claim name)."""
        return cls(username=f"{username} [{tag}]", content=content)

    @classmethod
    def moderation(cls, name: str, action: str, expiry: str) -> "Chat":
        return cls(
            username=MODERATION_USERNAME,
            content=f"User {name} has been banned from {action} {expiry}!",
        )

    def payload(self) -> dict[str, str]:
        """JSON body for the webhook."""
        return {"username": self.username, "content": self.content}

    def line(self) -> str:
        """Console echo form."""
        return f"{self.username}: {self.content}"


Notification = Union[Chat, Disconnect]

DISCONNECT = Disconnect()
