from typing import Protocol


class UsageSource(Protocol):
    """
    UsageSource stands as a common protocol for the external tools
    tokenlens collects usage reports from.

    Sources return the parsed JSON document of a report; turning it
    into usage records is left to the normalizer.
    """

    @property
    def name(self) -> "str": ...

    async def available(self) -> "bool": ...

    async def fetch(self, report: "str") -> "object": ...

    async def close(self) -> "None": ...
