"""Command line entry point for the EST client.

Run with: est-client --config est-client.yaml cacerts
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import yaml
from cryptography import x509
from pydantic import ValidationError

from est_client import __version__
from est_client.audit.logger import configure_audit_logger
from est_client.client import ESTClient
from est_client.config import AuthMode, load_config, load_config_from_env
from est_client.crypto.cert import certificate_to_pem, load_certificates_pem, load_private_key_pem
from est_client.exceptions import ConfigurationError, EnrollRetryAfterError, ESTClientError

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_RETRY_LATER = 2


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="est-client",
        description="Enrollment over Secure Transport (RFC 7030) client",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", type=Path, help="configuration YAML file")
    parser.add_argument("--server", help="EST server host, overrides configuration")
    parser.add_argument("--port", type=int, help="EST server port, overrides configuration")
    parser.add_argument("-o", "--out", type=Path, help="write PEM output to file instead of stdout")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("cacerts", help="retrieve the current CA certificates")

    enroll = sub.add_parser("enroll", help="enroll a new certificate from a CSR")
    enroll.add_argument("--csr", type=Path, required=True, help="PKCS#10 request (PEM or DER)")
    enroll.add_argument("--key", type=Path, required=True, help="private key that signed the CSR (PEM)")

    reenroll = sub.add_parser("reenroll", help="renew an existing certificate")
    reenroll.add_argument("--cert", type=Path, required=True, help="certificate to renew (PEM)")
    reenroll.add_argument("--key", type=Path, required=True, help="private key of the certificate (PEM)")

    for command in (enroll, reenroll):
        command.add_argument("--mode", choices=[m.value for m in AuthMode], help="authentication mode")
        command.add_argument("--disable-pop", action="store_true", help="disable Proof-of-Possession linking")

    return parser


def _write_certificates(certs: list[x509.Certificate], out: Path | None) -> None:
    pem = "".join(certificate_to_pem(cert) for cert in certs)
    if out is None:
        sys.stdout.write(pem)
    else:
        out.write_text(pem)


def run(argv: list[str] | None = None) -> int:
    """Execute the command line and return the exit status."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config) if args.config else load_config_from_env()
    except (OSError, yaml.YAMLError, ValidationError) as e:
        sys.stderr.write(f"est-client: invalid configuration: {e}\n")
        return EXIT_ERROR

    configure_audit_logger(config.audit)

    try:
        client = ESTClient.from_config(config)
        if args.server:
            client.set_server_name(args.server)
        if args.port is not None:
            client.set_server_port(args.port)

        if args.command == "cacerts":
            _write_certificates(client.fetch_latest_ca_certs(), args.out)
            return EXIT_OK

        mode = AuthMode(args.mode) if args.mode else (config.auth.mode if config.auth else AuthMode.HTTP_ONLY)
        key = load_private_key_pem(args.key)

        if args.command == "enroll":
            try:
                csr_data = args.csr.read_bytes()
            except OSError as e:
                raise ConfigurationError.invalid_config(field=str(args.csr), reason=str(e)) from e
            cert = client.send_simple_enroll_request(csr_data, mode, key, args.disable_pop)
        else:
            old_cert = load_certificates_pem(args.cert)[0]
            cert = client.send_simple_reenroll_request(old_cert, mode, key, args.disable_pop)

        if cert is None:
            sys.stderr.write("est-client: server returned no certificate\n")
            return EXIT_ERROR
        _write_certificates([cert], args.out)
    except EnrollRetryAfterError as e:
        hint = f" after {e.retry_after} seconds" if e.retry_after is not None else " later"
        sys.stderr.write(f"est-client: {e.message}; keep the CSR and key and retry{hint}\n")
        return EXIT_RETRY_LATER
    except ESTClientError as e:
        sys.stderr.write(f"est-client: {e.message}\n")
        return EXIT_ERROR

    return EXIT_OK


def main() -> None:
    """Console script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
