import pytest

from memchat.core.errors import DecodingError
from memchat.retrieval.segmenter import segment, iter_sentences


def test_splits_simple_sentences():
    assert segment("Sales rose. Costs fell. Profit grew.") == [
        "Sales rose.",
        "Costs fell.",
        "Profit grew.",
    ]


def test_empty_and_whitespace_input_yield_nothing():
    assert segment("") == []
    assert segment("   \n\n\t  ") == []


def test_single_sentence_without_terminal_punctuation():
    assert segment("  just a fragment  ") == ["just a fragment"]


def test_question_and_exclamation_marks_end_sentences():
    assert segment("Is it up? Yes! It is.") == ["Is it up?", "Yes!", "It is."]


def test_closing_quotes_stay_with_their_sentence():
    assert segment('He said "Stop." Then he left.') == ['He said "Stop."', "Then he left."]


def test_paragraph_breaks_are_hard_boundaries():
    text = "First paragraph without period\n\nSecond paragraph."
    assert segment(text) == ["First paragraph without period", "Second paragraph."]


def test_wrapped_lines_are_joined():
    text = "This sentence is\nwrapped over\nthree lines. Next one."
    assert segment(text) == ["This sentence is wrapped over three lines.", "Next one."]


def test_abbreviations_and_initials_do_not_split():
    text = "Dr. Smith met J. Doe, e.g. At noon. They talked."
    assert segment(text) == ["Dr. Smith met J. Doe, e.g. At noon.", "They talked."]


def test_lowercase_continuation_does_not_split():
    assert segment("Version 2. is out. Done.") == ["Version 2. is out.", "Done."]


def test_decimal_numbers_do_not_split():
    assert segment("Revenue grew 10.5% this year. Good.") == [
        "Revenue grew 10.5% this year.",
        "Good.",
    ]


def test_bytes_are_decoded_as_utf8():
    assert segment("Grüße aus Köln. Tschüss.".encode("utf-8")) == ["Grüße aus Köln.", "Tschüss."]


def test_invalid_bytes_raise_decoding_error():
    with pytest.raises(DecodingError) as excinfo:
        segment(b"caf\xe9 au lait.", source_id="menu.txt")
    assert excinfo.value.source_id == "menu.txt"


def test_custom_encoding():
    assert segment("café.".encode("latin-1"), encoding="latin-1") == ["café."]


def test_result_is_restartable():
    text = "One. Two."
    result = segment(text)
    assert list(result) == list(result) == list(iter_sentences(text))


def test_no_segment_is_empty_or_padded():
    text = "  Alpha.   Beta.  \n\n\n  Gamma.  "
    sentences = segment(text)
    assert sentences == ["Alpha.", "Beta.", "Gamma."]
    assert all(s == s.strip() and s for s in sentences)


@pytest.mark.parametrize("text, expected", [
    ("I said no. We left.", ["I said no.", "We left."]),
    ("We chose plan B. It worked.", ["We chose plan B.", "It worked."]),
    ("The shop is in Mar. It opens late.", ["The shop is in Mar.", "It opens late."]),
    ("Sales est. Costs fell.", ["Sales est.", "Costs fell."]),
])
def test_ordinary_words_and_letters_end_sentences(text, expected):
    assert segment(text) == expected


def test_chained_initials_stay_together():
    assert segment("We read J. R. R. Tolkien. It was long.") == [
        "We read J. R. R. Tolkien.",
        "It was long.",
    ]
