from apps.wspr_tool.main import main
from utils import TRANSMISSION_SAMPLES, read_wav


def test_encode_then_decode_wav(tmp_path, capsys):
    out = tmp_path / "w1aw.wav"
    assert main(["encode", "W1AW", "FN31", "10", "-o", str(out)]) == 0
    audio = read_wav(str(out))
    assert len(audio.samples) == TRANSMISSION_SAMPLES
    capsys.readouterr()

    assert main(["decode", str(out)]) == 0
    assert capsys.readouterr().out.startswith("W1AW FN31 10dBm")


def test_encode_then_decode_raw(tmp_path, capsys):
    out = tmp_path / "k1abc.pcm"
    assert main(["encode", "K1ABC", "FN42", "30", "-o", str(out), "--raw", "--freq", "1450"]) == 0
    assert out.stat().st_size == 2 * TRANSMISSION_SAMPLES
    capsys.readouterr()

    assert main(["decode", str(out), "--raw", "--freq", "1450", "--no-snr"]) == 0
    text = capsys.readouterr().out
    assert text.startswith("K1ABC FN42 30dBm")
    assert "SNR" not in text


def test_encode_invalid(tmp_path, capsys):
    assert main(["encode", "W1AW", "ZZ99", "10", "-o", str(tmp_path / "x.wav")]) == 2
    assert "invalid" in capsys.readouterr().err


def test_decode_short_file(tmp_path, capsys):
    out = tmp_path / "short.pcm"
    out.write_bytes(b"\x00\x00" * 100)
    assert main(["decode", str(out), "--raw"]) == 1
    assert "too short" in capsys.readouterr().out


def test_window(capsys):
    assert main(["window"]) == 0
    assert "transmit window" in capsys.readouterr().out
