#!/usr/bin/env python3
"""
Color Match Batch Processor
Main application entry point
"""

import sys
import argparse
import logging
import yaml
from pathlib import Path
from typing import List, Optional, Tuple
from colorama import init, Fore, Style

from batch_controller import BatchController
from image_buffer import ImageBuffer
from image_loader import ImageLoader, ImageLoadError

# Initialize colorama for colored console output
init(autoreset=True)

DEFAULT_CONFIG = {
    'engine': {
        'analysis_edge_px': 1000,
        'export_edge_px': 3000,
        'default_intensity': 50,
        'default_shadow_strength': 50,
        'exclude_extremes': True,
        'link_chroma': False,
    },
    'interactive': {
        'debounce_seconds': 0.15,
    },
    'input': {
        'max_targets': 10,
        'max_file_size_mb': 15,
        'raw_processing': True,
    },
    'output': {
        'folder': 'output',
        'format': 'jpeg',
        'jpeg_quality': 92,
    },
    'logging': {
        'level': 'INFO',
        'file': 'color_match.log',
        'console': True,
    },
}


def setup_logging(config: dict):
    """Setup logging configuration"""
    log_config = config.get('logging', {})
    log_level = getattr(logging, log_config.get('level', 'INFO').upper())

    # Create formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Setup file handler
    log_file = log_config.get('file')
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Setup console handler
    if log_config.get('console', True):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)


def merge_config(defaults: dict, overrides: dict) -> dict:
    """Merge overrides into a copy of defaults, one level of sections deep"""
    merged = {}
    for key, value in defaults.items():
        if isinstance(value, dict):
            merged[key] = dict(value)
            merged[key].update(overrides.get(key) or {})
        else:
            merged[key] = overrides.get(key, value)
    for key, value in overrides.items():
        if key not in merged:
            merged[key] = value
    return merged


def load_config(config_path: str = 'config.yaml') -> dict:
    """Load configuration from YAML file, falling back to defaults"""
    config_file = Path(config_path).resolve()

    if not config_file.exists():
        print(f"{Fore.YELLOW}Configuration file not found: {config_path}, using defaults")
        return merge_config(DEFAULT_CONFIG, {})

    try:
        with open(config_file, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        print(f"{Fore.RED}Error: Failed to parse configuration file: {e}")
        sys.exit(1)

    if not isinstance(loaded, dict):
        print(f"{Fore.RED}Error: Configuration must be a mapping: {config_path}")
        sys.exit(1)

    config = merge_config(DEFAULT_CONFIG, loaded)

    # Resolve output folder relative to the config file
    output_folder = Path(config['output']['folder'])
    if not output_folder.is_absolute():
        config['output']['folder'] = str((config_file.parent / output_folder).resolve())

    return config


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Match the colors of target images to a reference image")
    parser.add_argument('reference', help="Reference image")
    parser.add_argument('targets', nargs='+', help="Target images to adjust")
    parser.add_argument('--config', default='config.yaml', help="YAML configuration file")
    parser.add_argument('--intensity', type=int, default=None, help="Transfer strength 0-100 (50 = standard)")
    parser.add_argument('--shadow', type=int, default=None, help="Shadow compression 0-100")
    parser.add_argument('--output-dir', default=None, help="Folder for adjusted images")
    parser.add_argument('--preview-only', action='store_true', help="Write analysis-resolution previews only")
    return parser.parse_args(argv)


def load_targets(loader: ImageLoader, paths: List[str], max_targets: int) -> List[Tuple[int, Path, ImageBuffer]]:
    """Load target files, skipping the ones that fail"""
    logger = logging.getLogger(__name__)

    if len(paths) > max_targets:
        print(f"{Fore.YELLOW}Only the first {max_targets} targets will be processed")
        paths = paths[:max_targets]

    targets = []
    for image_id, path_str in enumerate(paths):
        try:
            targets.append((image_id, Path(path_str), loader.load(path_str)))
        except ImageLoadError as e:
            logger.error(f"Skipping target {path_str}: {e}")
            print(f"{Fore.RED}Skipping {path_str}: {e}")
    return targets


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point"""
    args = parse_args(argv)

    print(f"{Fore.CYAN}{'='*60}")
    print(f"{Fore.CYAN}Color Match Batch Processor")
    print(f"{Fore.CYAN}{'='*60}{Style.RESET_ALL}\n")

    config = load_config(args.config)
    setup_logging(config)
    logger = logging.getLogger(__name__)
    logger.info("Starting Color Match Batch Processor")

    loader = ImageLoader(config)
    controller = BatchController(config)

    try:
        reference = loader.load(args.reference)
    except ImageLoadError as e:
        logger.error(f"Failed to load reference: {e}")
        print(f"{Fore.RED}Error: Failed to load reference: {e}")
        return 1

    targets = load_targets(loader, args.targets, config['input'].get('max_targets', 10))
    if not targets:
        print(f"{Fore.RED}Error: No usable target images")
        return 1

    names = {image_id: path for image_id, path, _ in targets}
    output_dir = Path(args.output_dir or config['output']['folder'])

    # Analysis pass: previews at default parameters
    succeeded = []
    batch = controller.process_batch(reference, [(image_id, buffer) for image_id, _, buffer in targets])
    for count, result in enumerate(batch, start=1):
        name = names[result.image_id].name
        if result.ok:
            succeeded.append(result.image_id)
            print(f"{Fore.GREEN}[{count}/{len(targets)}] Analyzed {name}")
        else:
            print(f"{Fore.RED}[{count}/{len(targets)}] Failed {name}: {result.error}")

    if not succeeded:
        print(f"{Fore.RED}Error: No images could be processed")
        return 1

    # Apply requested parameters as an interactive host would
    defaults = controller.default_parameters
    intensity = defaults.intensity if args.intensity is None else args.intensity
    shadow = defaults.shadow_strength if args.shadow is None else args.shadow

    written = 0
    previews = {}
    for image_id in succeeded:
        try:
            previews[image_id] = controller.reprocess(image_id, intensity, shadow)
        except ValueError as e:
            print(f"{Fore.RED}Error: {e}")
            return 1

    if args.preview_only:
        results = list(previews.items())
    else:
        print(f"{Fore.CYAN}Rendering at {controller.export_edge_px}px...")
        results = [(r.image_id, r.buffer) for r in controller.export_all() if r.ok]

    for image_id, buffer in results:
        source = names[image_id]
        try:
            loader.save(buffer, output_dir / loader.output_name(source))
            written += 1
        except (ValueError, OSError) as e:
            logger.error(f"Failed to write {source.name}: {e}", exc_info=True)
            print(f"{Fore.RED}Failed to write {source.name}: {e}")

    print(f"\n{Fore.CYAN}Wrote {written} image(s) to {output_dir}{Style.RESET_ALL}")
    logger.info("Color Match Batch Processor finished")
    return 0 if written else 1


if __name__ == '__main__':
    sys.exit(main())
