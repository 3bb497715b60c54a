import sys
import logging
import argparse
from typing import List, Optional

import yaml
from pydantic import ValidationError

from .core.ca import CABootstrapper
from .core.config import CASettings
from .core.errors import CAError, LoadError

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def load_settings(args) -> CASettings:
    settings = CASettings.load_from_yaml(args.config) if args.config else CASettings()
    if args.dir:
        settings = settings.model_copy(update={"config_dir": args.dir})
    if args.verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    return settings


def cmd_ca_init(args, bootstrapper: CABootstrapper) -> int:
    bootstrapper.bootstrap()
    cert_path, key_path = bootstrapper.paths()
    print(f"CA ready:\n  {cert_path}\n  {key_path}")
    print("Install the certificate in your test browser's trust store (use `ca export` for PEM).")
    return 0


def cmd_ca_show(args, bootstrapper: CABootstrapper) -> int:
    cert_path, key_path = bootstrapper.paths()
    try:
        authority = bootstrapper.load()
    except LoadError as e:
        print(f"No usable CA: {e}", file=sys.stderr)
        return 1
    cert = authority.certificate
    print(f"Subject:     {cert.subject.rfc4514_string()}")
    print(f"Serial:      {cert.serial_number}")
    print(f"Not before:  {cert.not_valid_before_utc.isoformat()}")
    print(f"Not after:   {cert.not_valid_after_utc.isoformat()}")
    print(f"SHA-256:     {authority.fingerprint()}")
    print(f"Certificate: {cert_path}")
    print(f"Private key: {key_path}")
    return 0


def cmd_ca_export(args, bootstrapper: CABootstrapper) -> int:
    authority = bootstrapper.bootstrap()
    data = authority.certificate_pem() if args.format == "pem" else authority.certificate_der()
    with open(args.output, "wb") as f:
        f.write(data)
    print(f"CA certificate written to {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="awesometls", description="Local root CA for TLS interception")
    p.add_argument("--config", help="YAML settings file")
    p.add_argument("--dir", help="Store CA files in this directory")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ca = sub.add_parser("ca", help="CA utilities")
    p_ca_sub = p_ca.add_subparsers(dest="subcmd", required=True)
    p_ca_sub.add_parser("init", help="Load or generate the local CA")
    p_ca_sub.add_parser("show", help="Describe the stored CA without generating one")
    p_export = p_ca_sub.add_parser("export", help="Write the CA certificate for trust-store installation")
    p_export.add_argument("output")
    p_export.add_argument("--format", choices=["pem", "der"], default="pem")
    return p


COMMANDS = {
    "init": cmd_ca_init,
    "show": cmd_ca_show,
    "export": cmd_ca_export,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return 2
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    bootstrapper = CABootstrapper.from_settings(settings)
    try:
        return COMMANDS[args.subcmd](args, bootstrapper)
    except (CAError, OSError) as e:
        logging.getLogger("awesometls").error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
