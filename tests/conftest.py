import pytest

from local_translate.providers.base import BaseProvider, ProviderRequest, ProviderResponse
from local_translate.registry.settings import TranslationProfile


class ScriptedProvider(BaseProvider):
    """Provider double driven by scripted replies.

    ``replies`` feeds ``send`` (a string is the completion text, an exception is
    raised). ``streams`` feeds ``stream``, one list of chunks/exceptions per call.
    ``handler(request, cancel_token)`` replaces ``replies`` when given.
    """

    def __init__(self, profile=None, replies=None, streams=None, handler=None):
        super().__init__(profile)
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.handler = handler
        self.sent = []
        self.streamed = []
        self.closed = False

    def build_request(self, messages, *, stream=False, request_id=None):
        return ProviderRequest(
            model="fake", messages=messages, stream=stream, request_id=request_id
        )

    def send(self, request, cancel_token=None):
        self.sent.append(request)
        if self.handler is not None:
            return ProviderResponse(text=self.handler(request, cancel_token), raw=None)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return ProviderResponse(text=reply, raw=None, stop_reason="stop")

    def stream(self, request, cancel_token=None):
        self.streamed.append(request)
        script = self.streams.pop(0)
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item

    def close(self):
        self.closed = True


@pytest.fixture
def plain_profile():
    """Profile whose user message is the raw input text."""
    return TranslationProfile(
        id="plain",
        name="plain",
        api_endpoint="http://localhost:3002/v1/chat/completions",
        model="m",
        system_prompt="Translate into {{target_language}}.",
        user_prompt_template="{{input_text}}",
    )


@pytest.fixture
def scripted_provider():
    return ScriptedProvider
