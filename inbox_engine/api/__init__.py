from .channels import AutomatedMessenger, ChannelsApi
from .contacts import ContactsApi
from .messages import MessagesApi
from .presence import PresenceApi
from .rules import RulesApi

__all__ = [
    "AutomatedMessenger",
    "ChannelsApi",
    "ContactsApi",
    "MessagesApi",
    "PresenceApi",
    "RulesApi",
]
