from evm_indexer.utils import address_to_str, hex_to_str


class LogParser:
    @staticmethod
    def parse_raw(raw_log: dict, log_index_in_tx: int) -> dict:
        topics = [hex_to_str(topic) for topic in raw_log.get('topics', [])]
        return {
            'block_number': raw_log['blockNumber'],
            'block_hash': hex_to_str(raw_log['blockHash']),
            'transaction_hash': hex_to_str(raw_log['transactionHash']),
            'transaction_index': raw_log['transactionIndex'],
            'log_index': raw_log.get('logIndex'),
            'log_index_in_tx': log_index_in_tx,
            'contract_address': address_to_str(raw_log['address']),
            'topic0': topics[0] if len(topics) > 0 else None,
            'topic1': topics[1] if len(topics) > 1 else None,
            'topic2': topics[2] if len(topics) > 2 else None,
            'topic3': topics[3] if len(topics) > 3 else None,
            'topics': topics,
            'data': hex_to_str(raw_log['data']),
        }
