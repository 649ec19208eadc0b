from typing import Dict

from podpublisher.integrations.base import ProviderAdapter
from podpublisher.integrations.registry import build_adapters


async def get_adapters() -> Dict[str, ProviderAdapter]:
    return build_adapters()
