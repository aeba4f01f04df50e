import os

import pytest

import cryptex
from cryptex import main


@pytest.fixture(autouse=True)
def quiet(monkeypatch):
    monkeypatch.setattr(cryptex, "VERBOSE", False)


def run(capsys, *argv):
    main(list(argv))
    return capsys.readouterr()


def test_encrypt_text_default_rotation(capsys):
    assert run(capsys, "-e", "-t", "Abc123", "-k", "3").out == "Def456\n"


def test_decrypt_text_negative_shift(capsys):
    assert run(capsys, "-d", "-t", "Abc123", "-k", "-3").out == "Def456\n"


def test_xor_hex_round_trip(capsys):
    assert run(capsys, "-e", "-m", "xor", "-t", "HELLO", "-k", "KEY", "--hex").out == "030015070a\n"
    assert run(capsys, "-d", "-m", "2", "-t", "030015070a", "-k", "KEY", "--hex").out == "HELLO\n"


def test_non_utf8_output_shown_as_hex(capsys):
    # 'A' ^ 0xc3 (first byte of "é") is a lone continuation byte
    assert run(capsys, "-e", "-m", "xor", "-t", "A", "-k", "é").out == "[Raw Data]: 82\n"


def test_bad_hex_input_exits(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["-d", "-m", "xor", "-t", "zz", "-k", "KEY", "--hex"])
    assert "not valid hex" in str(excinfo.value.code)


def test_unknown_method_falls_back(capsys):
    captured = run(capsys, "-e", "-m", "bogus", "-t", "abc", "-k", "1")
    assert captured.out == "bcd\n"
    assert "Invalid method 'bogus'. Using rotation by default." in captured.err


def test_non_ascii_digit_method_falls_back(capsys):
    captured = run(capsys, "-e", "-m", "²", "-t", "abc", "-k", "1")
    assert captured.out == "bcd\n"
    assert "Using rotation by default." in captured.err


def test_full_device_output_exits_with_message(tmp_path):
    if not os.path.exists("/dev/full"):
        pytest.skip("needs /dev/full")
    source = tmp_path / "in.txt"
    source.write_bytes(b"abc")
    with pytest.raises(SystemExit) as excinfo:
        main(["-e", "-k", "1", "-i", str(source), "-o", "/dev/full", "--no-atomic"])
    assert str(excinfo.value.code).startswith("Error: Could not write output")


def test_file_streaming(tmp_path, capsys):
    source = tmp_path / "in.txt"
    encrypted = tmp_path / "out.enc"
    restored = tmp_path / "back.txt"
    source.write_bytes(b"Meet me at 10:45 by the old oak.\n" * 100)

    out = run(capsys, "-e", "-m", "xor", "-k", "oak", "-i", str(source), "-o", str(encrypted),
              "--chunk-size", "7").out
    assert "File encrypted successfully! (3300 bytes" in out

    run(capsys, "-d", "-m", "xor", "-k", "oak", "-i", str(encrypted), "-o", str(restored))
    assert restored.read_bytes() == source.read_bytes()


def test_file_input_to_stdout(tmp_path, capsys):
    source = tmp_path / "in.txt"
    source.write_bytes(b"Zebra 9")
    assert run(capsys, "-e", "-k", "1", "-i", str(source)).out == "Afcsb 0\n"


def test_text_to_output_file(tmp_path, capsys):
    target = tmp_path / "saved.txt"
    out = run(capsys, "-e", "-k", "2", "-t", "xyz", "-o", str(target), "--no-atomic").out
    assert target.read_bytes() == b"zab"
    assert f"Result saved to {target}" in out


def test_missing_input_file_exits_with_message(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["-e", "-k", "1", "-i", str(tmp_path / "nope.txt"), "-o", str(tmp_path / "o")])
    assert str(excinfo.value.code).startswith("Error: Could not open input file")


def test_bad_shift_exits_with_message():
    with pytest.raises(SystemExit) as excinfo:
        main(["-e", "-k", "three", "-t", "abc"])
    assert "Shift key must be an integer" in str(excinfo.value.code)


def test_empty_xor_key_exits_with_message():
    with pytest.raises(SystemExit) as excinfo:
        main(["-e", "-m", "xor", "-k", "", "-t", "abc"])
    assert "XOR key must not be empty" in str(excinfo.value.code)


@pytest.mark.parametrize("argv", [
    ["-e", "-t", "abc"],
    ["-e", "-t", "abc", "-k", "1", "--chunk-size", "0"],
    ["-t", "abc", "-k", "1"],
    ["-e", "-d", "-t", "abc", "-k", "1"],
])
def test_usage_errors(argv, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    assert excinfo.value.code == 2


def test_list(capsys):
    out = run(capsys, "-l").out
    assert "rotation" in out
    assert "xor" in out
    assert "Total: 2 cipher(s) registered." in out


def test_verbose_logs_to_stderr(capsys):
    captured = run(capsys, "-v", "-e", "-t", "abc", "-k", "1")
    assert captured.out == "bcd\n"
    assert "[INFO] Encrypted 3 byte(s) with rotation" in captured.err
