# fotosearch/cli.py

import argparse
import json
import logging
import sys
from pathlib import Path

from fotosearch.components.image_service import ImageService, UploadForm, create_image_service
from fotosearch.config import SystemConfig
from fotosearch.core.codec import ImageEncoding
from fotosearch.core.errors import FotoSearchError, NotFound
from fotosearch.utils.file_utils import format_file_size, guess_media_type
from fotosearch.utils.logging_config import setup_logging, log_operation

logger = logging.getLogger("fotosearch.cli")


def read_payload(source: str, encoding: ImageEncoding) -> bytes:
    """
    Bytes for a command line image source

    URLs are passed through as text, files (raw or holding base64 text)
    are read from disk, '-' reads stdin.
    """
    if encoding is ImageEncoding.URL:
        return source.encode('utf-8')
    if source == '-':
        return sys.stdin.buffer.read()
    return Path(source).read_bytes()


def upload_command(service: ImageService, args) -> int:
    """Upload one image"""
    encoding = ImageEncoding.parse(args.type)
    media_type = args.media_type
    if not media_type and encoding is ImageEncoding.FILE:
        media_type = guess_media_type(args.source)

    form = UploadForm(
        payload=read_payload(args.source, encoding),
        encoding=encoding,
        title=args.title,
        description=args.description,
        media_type=media_type,
    )
    record = service.upload(form, owner=args.owner)
    log_operation(logger, 'upload', image_id=record.id, owner=record.owner)

    print(json.dumps(record.to_dict(), indent=2))
    return 0


def import_command(service: ImageService, args) -> int:
    """Upload every image in a directory"""
    print(f"Importing images from: {args.directory}")

    summary = service.import_directory(args.directory, owner=args.owner,
                                       recursive=not args.no_recursive)

    print(f"\nStored {len(summary.stored)} images, {len(summary.failed)} failed")
    for path, reason in summary.failed.items():
        print(f"  - {path}: {reason}")

    return 0 if not summary.failed else 1


def search_command(service: ImageService, args) -> int:
    """Search for images similar to a query image"""
    encoding = ImageEncoding.parse(args.type)
    print(f"Searching for images similar to: {args.source}")

    results = service.search(encoding, read_payload(args.source, encoding),
                             threshold=args.threshold)
    log_operation(logger, 'search', matches=len(results), threshold=args.threshold)

    print(f"\nFound {len(results)} similar images:")
    for i, record in enumerate(results, 1):
        print(f"{i}. {record.id} {record.title!r} by {record.owner} "
              f"({record.width}x{record.height}) {record.storage_location}")

    # Save results to JSON if requested
    if args.output:
        with open(args.output, 'w') as f:
            json.dump({'results': [record.to_dict() for record in results]}, f, indent=2)
        print(f"\nResults saved to: {args.output}")

    return 0


def show_command(service: ImageService, args) -> int:
    """Print one stored image record"""
    print(json.dumps(service.get(args.image_id).to_dict(), indent=2))
    return 0


def stats_command(service: ImageService, args) -> int:
    """Print store statistics"""
    stats = service.store.stats()
    db_path = Path(stats['database_path'])
    size = db_path.stat().st_size if db_path.exists() else 0

    print(f"Database: {db_path} ({format_file_size(size)})")
    print(f"Images: {stats['records']}")
    print(f"Distinct fingerprints: {stats['buckets']}")
    print(f"Fingerprint length: {stats['fingerprint_bits']} bits")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="fotosearch - perceptual image store and similarity search"
    )
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='Path to YAML configuration file')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    encodings = [encoding.value for encoding in ImageEncoding]

    # Upload command
    upload_parser = subparsers.add_parser('upload', help='Upload an image')
    upload_parser.add_argument('source', help='Image file, base64 file, URL, or - for stdin')
    upload_parser.add_argument('-t', '--type', choices=encodings, default='file',
                               help='How the source is encoded')
    upload_parser.add_argument('-u', '--owner', required=True, help='Owning username')
    upload_parser.add_argument('--title', default='')
    upload_parser.add_argument('--description', default='')
    upload_parser.add_argument('--media-type', default='', help='Declared MIME type')
    upload_parser.set_defaults(func=upload_command)

    # Import command
    import_parser = subparsers.add_parser('import', help='Upload all images in a directory')
    import_parser.add_argument('directory', help='Directory containing images')
    import_parser.add_argument('-u', '--owner', required=True, help='Owning username')
    import_parser.add_argument('--no-recursive', action='store_true',
                               help='Do not descend into subdirectories')
    import_parser.set_defaults(func=import_command)

    # Similarity search command
    search_parser = subparsers.add_parser('search', help='Search for similar images')
    search_parser.add_argument('source', help='Query image file, base64 file, URL, or -')
    search_parser.add_argument('-t', '--type', choices=encodings, default='file',
                               help='How the source is encoded')
    search_parser.add_argument('-d', '--threshold', type=int, default=None,
                               help='Maximum Hamming distance (default from config)')
    search_parser.add_argument('-o', '--output', help='Output JSON file for results')
    search_parser.set_defaults(func=search_command)

    # Show command
    show_parser = subparsers.add_parser('show', help='Show a stored image record')
    show_parser.add_argument('image_id', help='Image id')
    show_parser.set_defaults(func=show_command)

    # Stats command
    stats_parser = subparsers.add_parser('stats', help='Show store statistics')
    stats_parser.set_defaults(func=stats_command)

    return parser


def main_cli(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = SystemConfig.load(args.config)
    setup_logging(config)

    service = None
    try:
        service = create_image_service(config)
        return args.func(service, args)
    except NotFound as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except FotoSearchError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: could not process image ({type(e).__name__})", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if service is not None:
            service.store.close()


if __name__ == "__main__":
    sys.exit(main_cli())
