import os
from pathlib import Path

from dynaconf import Dynaconf, Validator
from hexbytes import HexBytes


def hex_to_str(hex_value: HexBytes | bytes | str) -> str:
    """Normalise a hash, address or byte payload to a lowercase 0x-prefixed hex string"""
    if isinstance(hex_value, str):
        if not hex_value.startswith(("0x", "0X")):
            raise TypeError(f"Expected 0x-prefixed hex string, got {hex_value!r}")
        return hex_value.lower()
    if not isinstance(hex_value, (bytes, bytearray)):
        raise TypeError(f"Expected HexBytes, got {type(hex_value)}")

    # HexBytes.hex() has no '0x' prefix from hexbytes 1.0 onwards
    return '0x' + HexBytes(hex_value).hex()


def optional_hex(value) -> str | None:
    return hex_to_str(value) if value is not None else None


def address_to_str(address) -> str | None:
    """Checksummed addresses from web3 become lowercase hex"""
    if address is None:
        return None
    if isinstance(address, (bytes, bytearray)):
        return hex_to_str(address)
    return str(address).lower()


def load_config(file_name: str | os.PathLike | None = None) -> Dynaconf:
    """Load and validate indexer configuration

    Values in the YAML file can be overridden with INDEXER_ prefixed
    environment variables, e.g. INDEXER_SYNC__BATCH_SIZE=50.

    Params:
        file_name (str): Path of the config file. Defaults to $INDEXER_CONFIG or ./config.yml

    Returns:
        Dynaconf: Validated configuration object
    """
    config_path = Path(file_name or os.environ.get("INDEXER_CONFIG", "config.yml")).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    settings = Dynaconf(
        settings_files=[str(config_path)],
        envvar_prefix="INDEXER",
        validators=[
            # Validate structure and types
            Validator('chain.name', must_exist=True,
                     is_type_of=str,
                     condition=lambda x: x.islower() and x == x.strip(),
                     messages={"condition": "Chain name must be lowercase with no leading/trailing spaces"}
            ),
            Validator('chain.rpc_urls', must_exist=True, is_type_of=list,
                     condition=lambda x: len(x) > 0,
                     messages={"condition": "At least one RPC URL is required"}
            ),
            Validator('chain.request_timeout', default=30, is_type_of=(int, float), gt=0),
            Validator('storage.database_url', must_exist=True, is_type_of=str),
            Validator('sync.start_block', default=0, is_type_of=int, gte=0),
            Validator('sync.batch_size', default=10, is_type_of=int, gte=1),
            Validator('sync.poll_interval', default=10, is_type_of=(int, float), gt=0),
            Validator('sync.max_reorg_depth', default=64, is_type_of=int, gte=1),
            Validator('sync.prefetch_concurrency', default=4, is_type_of=int, gte=1),
            Validator('retry.attempts', default=5, is_type_of=int, gte=1),
            Validator('retry.base_delay', default=2, is_type_of=(int, float), gte=0),
            Validator('retry.max_delay', default=60, is_type_of=(int, float), gte=0),
            Validator('retry.jitter', default=True, is_type_of=bool),
            Validator('api.enabled', default=True, is_type_of=bool),
            Validator('api.host', default='0.0.0.0', is_type_of=str),
            Validator('api.port', default=3000, is_type_of=int),
            Validator('metrics.enabled', default=True, is_type_of=bool),
            Validator('metrics.host', default='0.0.0.0', is_type_of=str),
            Validator('metrics.port', default=8000, is_type_of=int),
            Validator('logging.level', default='INFO', is_type_of=str),
            Validator('logging.file', default='logs/indexer.log', is_type_of=str),
        ]
    )
    # Validate all settings at once
    settings.validators.validate()

    return settings
