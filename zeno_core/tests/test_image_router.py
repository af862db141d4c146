import pytest

from zeno_core.chat.image_router import ImageRequestRouter


@pytest.mark.parametrize(
    "message",
    [
        "generate an image of a red bicycle",
        "Create image of a castle",
        "make a picture of the sea",
        "draw a cat",
        "paint a sunset over mountains",
        "show me a photo of Paris",
        "imagine a city on Mars",
        "  Visualize the solar system  ",
    ],
)
def test_image_requests_are_detected(message):
    assert ImageRequestRouter().classify(message)


@pytest.mark.parametrize(
    "message",
    [
        "what is an image classifier?",
        "Can you explain how diffusion models work",
        "I want to generate a report",
        "",
    ],
)
def test_ordinary_messages_pass_through(message):
    router = ImageRequestRouter()
    assert not router.classify(message)
    assert router.route(message) is None


def test_extract_prompt_strips_trigger_phrase():
    router = ImageRequestRouter()
    assert router.extract_prompt("generate an image of a red bicycle") == "a red bicycle"
    assert router.extract_prompt("show me a picture of a dog") == "a dog"
    assert router.extract_prompt("draw a cat") == "cat"


def test_extract_prompt_falls_back_to_whole_message_when_too_short():
    router = ImageRequestRouter()
    assert router.extract_prompt("draw an ox") == "draw an ox"


def test_extract_prompt_is_stable_on_plain_description():
    router = ImageRequestRouter()
    prompt = router.extract_prompt("generate an image of a red bicycle")
    assert router.extract_prompt(prompt) == prompt


def test_route_returns_request():
    req = ImageRequestRouter().route("  create an image of a lighthouse at dusk ")
    assert req is not None
    assert req.prompt == "a lighthouse at dusk"
    assert req.message == "create an image of a lighthouse at dusk"


@pytest.mark.parametrize(
    "message,expected",
    [
        ("visualize offshore wind farms", "offshore wind farms"),
        ("draw an artichoke", "artichoke"),
        ("paint forests at night", "forests at night"),
        ("imagine withered roses", "withered roses"),
        ("draw artwork of a harbor", "a harbor"),
        ("show me a picture offshore", "offshore"),
    ],
)
def test_extract_prompt_only_strips_whole_words(message, expected):
    assert ImageRequestRouter().extract_prompt(message) == expected
