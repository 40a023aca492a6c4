import os
import unittest
from unittest import mock

import requests

from core import tts_service
from core.errors import AppError, ErrorKind

AZURE_ENV = {
    "AZURE_SPEECH_KEY": "speech-key",
    "AZURE_SPEECH_REGION": "eastasia",
    "AZURE_TTS_VOICE_EN": "en-US-JennyNeural",
}


def _response(status_code=200, text="", content=b""):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.text = text
    resp.content = content
    return resp


class TtsServiceTestCase(unittest.TestCase):
    def test_build_ssml_escapes_text(self):
        ssml = tts_service.build_ssml('Tom & "Jerry" <3 it\'s', "en", "en-US-JennyNeural")
        self.assertIn('xml:lang="en"', ssml)
        self.assertIn('<voice name="en-US-JennyNeural">', ssml)
        self.assertIn("Tom &amp; &quot;Jerry&quot; &lt;3 it&apos;s", ssml)

    def test_unsupported_locale(self):
        with mock.patch.dict(os.environ, AZURE_ENV):
            with self.assertRaises(AppError) as ctx:
                tts_service.synthesize_speech("hello", "fr")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_INPUT)
        self.assertEqual(ctx.exception.message, "Unsupported locale")

    def test_missing_voice(self):
        with mock.patch.dict(os.environ, dict(AZURE_ENV, AZURE_TTS_VOICE_JA="")):
            with self.assertRaises(AppError) as ctx:
                tts_service.synthesize_speech("こんにちは", "ja")
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_CONFIGURED)

    def test_synthesize_exchanges_token_then_posts_ssml(self):
        token_resp = _response(text="token-123")
        audio_resp = _response(content=b"mp3-bytes")
        with mock.patch.dict(os.environ, AZURE_ENV), \
                mock.patch.object(tts_service.requests, "post", side_effect=[token_resp, audio_resp]) as post:
            result = tts_service.synthesize_speech("A cat", "EN")

        self.assertEqual(result.audio, b"mp3-bytes")
        self.assertEqual(result.content_type, "audio/mpeg")
        self.assertEqual(result.voice, "en-US-JennyNeural")

        token_call, synth_call = post.call_args_list
        self.assertEqual(token_call.args[0], "https://eastasia.api.cognitive.microsoft.com/sts/v1.0/issueToken")
        self.assertEqual(token_call.kwargs["headers"], {"Ocp-Apim-Subscription-Key": "speech-key"})
        self.assertEqual(synth_call.args[0], "https://eastasia.tts.speech.microsoft.com/cognitiveservices/v1")
        headers = synth_call.kwargs["headers"]
        self.assertEqual(headers["Authorization"], "Bearer token-123")
        self.assertEqual(headers["X-Microsoft-OutputFormat"], tts_service.OUTPUT_FORMAT)
        self.assertIn(b"A cat", synth_call.kwargs["data"])

    def test_token_failure_is_unavailable(self):
        with mock.patch.dict(os.environ, AZURE_ENV), \
                mock.patch.object(tts_service.requests, "post", return_value=_response(status_code=401)):
            with self.assertRaises(AppError) as ctx:
                tts_service.get_access_token()
        self.assertEqual(ctx.exception.kind, ErrorKind.UNAVAILABLE)

    def test_network_error_is_unavailable(self):
        with mock.patch.dict(os.environ, AZURE_ENV), \
                mock.patch.object(tts_service.requests, "post", side_effect=requests.ConnectionError("down")):
            with self.assertRaises(AppError) as ctx:
                tts_service.synthesize_speech("hello", "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.UNAVAILABLE)


if __name__ == "__main__":
    unittest.main()
