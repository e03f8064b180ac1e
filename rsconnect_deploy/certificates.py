from __future__ import annotations

from pathlib import Path

from .exception import ConfigurationException

BINARY_ENCODED_FILETYPES = [".cer", ".der"]
TEXT_ENCODED_FILETYPES = [".ca-bundle", ".crt", ".key", ".pem"]


def read_certificate_file(location: str) -> str | bytes:
    """Reads a CA certificate file given with --cacert.

    '.cer' and '.der' files are DER encoded and read as bytes; '.ca-bundle',
    '.crt', '.key' and '.pem' files are PEM encoded and read as text.
    """

    path = Path(location)
    suffix = path.suffix

    try:
        if suffix in BINARY_ENCODED_FILETYPES:
            return path.read_bytes()

        if suffix in TEXT_ENCODED_FILETYPES:
            return path.read_text()
    except OSError as error:
        raise ConfigurationException("Unable to read the certificate file %s: %s" % (location, error), cause=error)

    types = sorted(BINARY_ENCODED_FILETYPES + TEXT_ENCODED_FILETYPES)
    types = [f"'{_}'" for _ in types]
    human_readable_string = ", ".join(types[:-1]) + ", or " + types[-1]
    raise ConfigurationException(
        f"The certificate file type is not recognized. Expected {human_readable_string}. Found '{suffix}'."
    )
