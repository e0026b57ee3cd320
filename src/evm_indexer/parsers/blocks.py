from evm_indexer.utils import hex_to_str


class BlockParser:
    @staticmethod
    def parse_raw(raw_block: dict) -> dict:
        return {
            'number': raw_block['number'],
            'hash': hex_to_str(raw_block['hash']),
            'parent_hash': hex_to_str(raw_block['parentHash']),
            'timestamp': raw_block['timestamp'],
            'gas_used': raw_block['gasUsed'],
            'gas_limit': raw_block['gasLimit'],
            'base_fee_per_gas': raw_block.get('baseFeePerGas'),
            'transaction_count': len(raw_block.get('transactions', [])),
        }

    @staticmethod
    def parse_header(raw_block: dict) -> dict:
        return {
            'number': raw_block['number'],
            'hash': hex_to_str(raw_block['hash']),
            'parent_hash': hex_to_str(raw_block['parentHash']),
        }
