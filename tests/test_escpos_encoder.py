import pytest

from ticket_printer.printing import escpos


@pytest.mark.parametrize(
    "buf, expected",
    [
        (escpos.initialize(), "1B 40"),
        (escpos.align("center"), "1B 61 01"),
        (escpos.align("left"), "1B 61 00"),
        (escpos.bold(True), "1B 45 01"),
        (escpos.bold(False), "1B 45 00"),
        (escpos.line_feed(), "0A"),
        (escpos.carriage_return(), "0D"),
        (escpos.cut(), "1D 56 42 00"),
    ],
)
def test_directive_bytes_are_exact(buf, expected):
    assert escpos.hexdump(buf) == expected
    assert isinstance(buf, bytes)


def test_text_is_utf8_without_escaping():
    assert escpos.text("Café") == "Café".encode("utf-8")
    assert escpos.line("Price: 50") == b"Price: 50\n"


def test_unknown_alignment_rejected():
    with pytest.raises(ValueError):
        escpos.align("right")
