from __future__ import annotations

import logging
import urllib.parse

import httpx
from bs4 import BeautifulSoup

from .models import Answer

LOGGER = logging.getLogger("replybot.lookup")

STATMUSE_ASK_URL = "https://www.statmuse.com/nba/ask"
ANSWER_SELECTOR = "h1 p"
IMAGE_SELECTOR = 'meta[property="og:image"]'


class AnswerLookupError(RuntimeError):
    pass


def parse_answer(html: str) -> Answer:
    soup = BeautifulSoup(html, "html.parser")
    node = soup.select_one(ANSWER_SELECTOR)
    if node is None:
        raise AnswerLookupError("No answer found in html.")

    text = " ".join(node.get_text(" ", strip=True).split())
    if not text:
        raise AnswerLookupError("Answer element is empty.")

    image = soup.select_one(IMAGE_SELECTOR)
    image_url = image.get("content") if image is not None else None
    return Answer(text=text, image_url=image_url or None)


class StatmuseLookup:
    def __init__(self, http_client: httpx.AsyncClient, *, base_url: str = STATMUSE_ASK_URL) -> None:
        self._client = http_client
        self._base_url = base_url.rstrip("/")

    def url_for(self, query: str) -> str:
        return f"{self._base_url}/{urllib.parse.quote(query, safe='')}"

    async def lookup(self, query: str) -> Answer:
        url = self.url_for(query)
        try:
            response = await self._client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            raise AnswerLookupError(
                f"Answer request failed with status {error.response.status_code}"
            ) from error
        except httpx.HTTPError as error:
            raise AnswerLookupError(f"Answer request failed: {error}") from error

        LOGGER.debug("html obtained from %s", url)
        answer = parse_answer(response.text)
        LOGGER.debug("answer obtained from %s: %s", url, answer.text)
        return answer
