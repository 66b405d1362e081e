"""
Gera o par de chaves RSA do actor local (assinatura HTTP draft-cavage).
Uso: uv run python scripts/generate_keys.py

Os caminhos vêm de `private_key_path` / `public_key_path` em settings.toml.
"""

from pathlib import Path
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization

from fedinbox.config import settings


def main() -> None:
    private_path = Path(settings.private_key_path)
    public_path = Path(settings.public_key_path)
    if private_path.exists():
        print(f"✗ {private_path} já existe — remova o arquivo para gerar outro par.")
        return

    private_path.parent.mkdir(parents=True, exist_ok=True)
    public_path.parent.mkdir(parents=True, exist_ok=True)

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )

    public_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )

    print(f"✓ {private_path} e {public_path} gerados com sucesso.")


if __name__ == "__main__":
    main()
