# podpublisher/integrations/registry.py
from typing import Dict, Optional, Type

import httpx

from podpublisher.integrations.base import ProviderAdapter
from podpublisher.integrations.facebook import FacebookAdapter
from podpublisher.integrations.gmail import GmailAdapter
from podpublisher.integrations.kit import KitAdapter
from podpublisher.integrations.linkedin import LinkedInAdapter
from podpublisher.integrations.mailchimp import MailchimpAdapter
from podpublisher.integrations.medium import MediumAdapter
from podpublisher.integrations.sendgrid import SendGridAdapter
from podpublisher.integrations.twitter import TwitterAdapter

ADAPTER_CLASSES: Dict[str, Type[ProviderAdapter]] = {
    "linkedin": LinkedInAdapter,
    "twitter": TwitterAdapter,
    "medium": MediumAdapter,
    "facebook": FacebookAdapter,
    "gmail": GmailAdapter,
    "sendgrid": SendGridAdapter,
    "mailchimp": MailchimpAdapter,
    "kit": KitAdapter,
}


def get_adapter(provider: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[ProviderAdapter]:
    cls = ADAPTER_CLASSES.get(provider)
    if cls is None:
        return None
    return cls(transport=transport)


def build_adapters(transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, ProviderAdapter]:
    return {name: cls(transport=transport) for name, cls in ADAPTER_CLASSES.items()}
