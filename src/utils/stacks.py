import re

# c32 address, a dot, then a contract name.
SMART_CONTRACT_REGEX = re.compile(r"^[0123456789ABCDEFGHJKMNPQRSTVWXYZ]{28,41}\.[a-zA-Z]([a-zA-Z0-9]|[-_]){0,39}$")
TOKEN_NUMBER_REGEX = re.compile(r"^\d+$")


def is_contract_principal(value: str) -> bool:
    """Check a `<address>.<contract-name>` string"""
    return bool(value) and SMART_CONTRACT_REGEX.match(value) is not None