from dataclasses import dataclass, field, asdict
from typing import Optional
import yaml
from pathlib import Path


@dataclass
class StoreConfig:
    """Configuration for the fingerprint store"""
    database_path: str = "data/fotosearch.db"
    busy_timeout: float = 30.0  # Seconds to wait on a locked database
    scan_batch_size: int = 512  # Buckets read per page while scanning


@dataclass
class FingerprintConfig:
    """Configuration for perceptual fingerprinting"""
    hash_method: str = "dhash"  # Options: dhash, phash, average_hash, whash
    hash_size: int = 8  # 8 -> 64 bit fingerprints
    max_image_pixels: int = 100_000_000

    @property
    def bits(self) -> int:
        return self.hash_size * self.hash_size


@dataclass
class FetchConfig:
    """Configuration for downloading images from URLs"""
    timeout_seconds: float = 10.0
    max_bytes: int = 10 * 1024 * 1024


@dataclass
class SearchConfig:
    """Configuration for similarity search"""
    hamming_distance: int = 20


@dataclass
class BlobStorageConfig:
    """Configuration for remote blob storage (S3)"""
    s3_bucket_name: Optional[str] = None
    region: str = "us-east-1"
    key_prefix: str = "images/"


@dataclass
class SystemConfig:
    """System-wide configuration"""
    log_level: str = "INFO"
    log_dir: str = "logs"
    structured_logs: bool = False

    store: StoreConfig = field(default_factory=StoreConfig)
    fingerprint: FingerprintConfig = field(default_factory=FingerprintConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    blob_storage: BlobStorageConfig = field(default_factory=BlobStorageConfig)

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        with open(path, 'w') as f:
            yaml.dump(asdict(self), f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file"""
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls()

        # Load system settings
        config.log_level = config_dict.get('log_level', config.log_level)
        config.log_dir = config_dict.get('log_dir', config.log_dir)
        config.structured_logs = config_dict.get('structured_logs', config.structured_logs)

        # Load store settings
        if 'store' in config_dict:
            st = config_dict['store']
            config.store = StoreConfig(
                database_path=st.get('database_path', config.store.database_path),
                busy_timeout=st.get('busy_timeout', config.store.busy_timeout),
                scan_batch_size=st.get('scan_batch_size', config.store.scan_batch_size)
            )

        # Load fingerprint settings
        if 'fingerprint' in config_dict:
            fp = config_dict['fingerprint']
            config.fingerprint = FingerprintConfig(
                hash_method=fp.get('hash_method', config.fingerprint.hash_method),
                hash_size=fp.get('hash_size', config.fingerprint.hash_size),
                max_image_pixels=fp.get('max_image_pixels', config.fingerprint.max_image_pixels)
            )

        # Load fetch settings
        if 'fetch' in config_dict:
            fe = config_dict['fetch']
            config.fetch = FetchConfig(
                timeout_seconds=fe.get('timeout_seconds', config.fetch.timeout_seconds),
                max_bytes=fe.get('max_bytes', config.fetch.max_bytes)
            )

        # Load search settings
        if 'search' in config_dict:
            ss = config_dict['search']
            config.search = SearchConfig(
                hamming_distance=ss.get('hamming_distance', config.search.hamming_distance)
            )

        # Load blob storage settings
        if 'blob_storage' in config_dict:
            bs = config_dict['blob_storage']
            config.blob_storage = BlobStorageConfig(
                s3_bucket_name=bs.get('s3_bucket_name', config.blob_storage.s3_bucket_name),
                region=bs.get('region', config.blob_storage.region),
                key_prefix=bs.get('key_prefix', config.blob_storage.key_prefix)
            )

        return config
