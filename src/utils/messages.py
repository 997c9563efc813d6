from textual.message import Message


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class SessionChangedMessage(Message):
    """
    Posted by screens listening to the session manager whenever the session
    or its state changed (bootstrap finished, login, logout, profile loaded).
    """

    bubble = True


class CartChangedMessage(Message):
    """
    Posted from the cart store listener after add/remove/clear.
    Refreshes the cart screen and the sidebar badge.
    """

    bubble = True


class ReviewsChangedMessage(Message):
    """
    Fired by the review gate listener, eligibility or review list changed
    """

    bubble = True


class NewOrderMessage(Message):
    """
    Fired when a new order is created.
    Listened to by order history
    """

    bubble = True


class ModeSwitchedMessage(Message):
    """
    fired whenever switch_mode is called
    must be fired from app level
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.old_mode = old_mode
        self.new_mode = new_mode
