"""Generate a development ES256 key pair.

Writes an elliptic-curve P-256 private key (SEC1, ``EC PRIVATE KEY``) and
its public key (SubjectPublicKeyInfo, ``PUBLIC KEY``) in PEM form::

    wasteops-keygen                    # -> assets/dev/jwt/{privkey,pubkey}.pem
    wasteops-keygen --dir keys --force
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

DEFAULT_DIR = Path("assets") / "dev" / "jwt"
PRIVATE_KEY_NAME = "privkey.pem"
PUBLIC_KEY_NAME = "pubkey.pem"


def generate_key_pair() -> tuple[bytes, bytes]:
    """Return ``(private_pem, public_pem)`` for a fresh P-256 key."""
    key = ec.generate_private_key(ec.SECP256R1())
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def write_key_pair(target_dir: Path, *, force: bool = False) -> tuple[Path, Path]:
    """Write a new key pair into *target_dir*.

    Raises FileExistsError when either file exists and *force* is False.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    private_path = target_dir / PRIVATE_KEY_NAME
    public_path = target_dir / PUBLIC_KEY_NAME
    if not force:
        for path in (private_path, public_path):
            if path.exists():
                raise FileExistsError(f"{path} already exists (use --force to overwrite)")

    private_pem, public_pem = generate_key_pair()
    private_path.write_bytes(private_pem)
    os.chmod(private_path, 0o600)
    public_path.write_bytes(public_pem)
    return private_path, public_path


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate an ES256 (P-256) JWT key pair")
    parser.add_argument(
        "--dir", type=Path, default=DEFAULT_DIR, help=f"Output directory (default: {DEFAULT_DIR})"
    )
    parser.add_argument("--force", action="store_true", help="Overwrite existing key files")
    args = parser.parse_args(argv)

    print(f"Generating ECDSA P-256 keys in {args.dir}...")
    try:
        private_path, public_path = write_key_pair(args.dir, force=args.force)
    except FileExistsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(f"Created: {private_path}")
    print(f"Created: {public_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
