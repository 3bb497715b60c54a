from cryptography import x509

from awesometls.cli import main


def test_ca_init(tmp_path, capsys):
    assert main(["--dir", str(tmp_path), "ca", "init"]) == 0
    out = capsys.readouterr().out
    assert str(tmp_path / "ca.der") in out
    assert (tmp_path / "caKey.der").is_file()


def test_ca_show_without_ca(tmp_path, capsys):
    assert main(["--dir", str(tmp_path), "ca", "show"]) == 1
    assert "No usable CA" in capsys.readouterr().err
    assert not (tmp_path / "ca.der").exists()


def test_ca_show_after_init(tmp_path, capsys):
    main(["--dir", str(tmp_path), "ca", "init"])
    capsys.readouterr()
    assert main(["--dir", str(tmp_path), "ca", "show"]) == 0
    out = capsys.readouterr().out
    cert = x509.load_der_x509_certificate((tmp_path / "ca.der").read_bytes())
    assert f"Serial:      {cert.serial_number}" in out
    assert "CN=Awesome TLS" in out


def test_ca_export_pem_and_der(tmp_path):
    store = tmp_path / "store"
    pem_out = tmp_path / "ca.pem"
    der_out = tmp_path / "ca.cer"
    assert main(["--dir", str(store), "ca", "export", str(pem_out)]) == 0
    assert main(["--dir", str(store), "ca", "export", str(der_out), "--format", "der"]) == 0

    pem_cert = x509.load_pem_x509_certificate(pem_out.read_bytes())
    der_cert = x509.load_der_x509_certificate(der_out.read_bytes())
    assert pem_cert == der_cert
    assert der_out.read_bytes() == (store / "ca.der").read_bytes()


def test_config_file(tmp_path):
    cfg = tmp_path / "settings.yaml"
    cfg.write_text(f"config_dir: {tmp_path / 'fromcfg'}\ncert_file: root.der\n", encoding="utf-8")
    assert main(["--config", str(cfg), "ca", "init"]) == 0
    assert (tmp_path / "fromcfg" / "root.der").is_file()


def test_missing_config_file(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "nope.yaml"), "ca", "init"]) == 2
    assert "Invalid settings" in capsys.readouterr().err


def test_invalid_config_values(tmp_path, capsys):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("log_level: LOUD\n", encoding="utf-8")
    assert main(["--config", str(cfg), "ca", "init"]) == 2
    assert "Invalid settings" in capsys.readouterr().err


def test_export_to_unwritable_path(tmp_path):
    out = tmp_path / "missing-dir" / "ca.pem"
    assert main(["--dir", str(tmp_path / "store"), "ca", "export", str(out)]) == 2
    assert not out.exists()
