from evm_indexer.utils import address_to_str, hex_to_str


def _wei(value) -> str | None:
    return str(value) if value is not None else None


class TransactionParser:
    @staticmethod
    def parse_raw(raw_tx: dict, receipt: dict) -> dict:
        """Parse transaction data from both transaction and receipt"""
        return {
            # Fields from transaction
            'tx_hash': hex_to_str(raw_tx['hash']),
            'block_number': raw_tx['blockNumber'],
            'block_hash': hex_to_str(raw_tx['blockHash']),
            'transaction_index': raw_tx['transactionIndex'],
            'from_address': address_to_str(raw_tx['from']),
            'to_address': address_to_str(raw_tx.get('to')),  # None for contract creation
            'value': str(raw_tx['value']),
            'gas': raw_tx['gas'],
            'gas_price': _wei(raw_tx.get('gasPrice')),
            'max_fee_per_gas': _wei(raw_tx.get('maxFeePerGas')),
            'max_priority_fee_per_gas': _wei(raw_tx.get('maxPriorityFeePerGas')),
            'nonce': raw_tx['nonce'],
            'type': raw_tx.get('type'),
            'input_data': hex_to_str(raw_tx['input']),

            # Fields from receipt
            'status': receipt.get('status'),
            'gas_used': receipt.get('gasUsed'),
            'cumulative_gas_used': receipt.get('cumulativeGasUsed'),
            'effective_gas_price': _wei(receipt.get('effectiveGasPrice')),
            'contract_address': address_to_str(receipt.get('contractAddress')),
        }
