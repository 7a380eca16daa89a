#!/usr/bin/env python3

import argparse
import sys
import yaml
from tutorlib.core import utils
from tutorlib.core.errors import ExportError
from tutorlib.core.project import TutorProject

#============================================

def parse_args():
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(description="Export a story to a single movie file")
	parser.add_argument('-y', '--yaml', dest='yamlfile', required=True,
		help='story yaml (or json project export) listing the scenes to export')
	parser.add_argument('-o', '--output', dest='output_file',
		help='override output file from the story file')
	parser.add_argument('-n', '--dry-run', dest='dry_run', action='store_true',
		help='validate only, do not export')
	parser.add_argument('-c', '--cache-dir', dest='cache_dir',
		help='directory for downloaded and decoded media')
	parser.add_argument('-k', '--keep-temp', dest='keep_temp',
		help='keep temporary export files', action='store_true')
	parser.add_argument('-K', '--no-keep-temp', dest='keep_temp',
		help='remove temporary export files', action='store_false')
	parser.add_argument('-p', '--dump-plan', dest='dump_plan', action='store_true',
		help='print the scene plan after loading')
	parser.add_argument('--offline', dest='clock', action='store_const',
		const='offline', help='render on a virtual clock instead of wall time')
	parser.add_argument('-q', '--quiet', dest='quiet', action='store_true',
		help='suppress progress output')
	parser.set_defaults(keep_temp=False, clock=None)
	args = parser.parse_args()
	return args

#============================================

def print_progress(message: str) -> None:
	if not utils.is_quiet_mode():
		print(message)

#============================================

def main():
	args = parse_args()
	utils.set_quiet_mode(args.quiet)
	project = TutorProject(args.yamlfile, output_override=args.output_file,
		dry_run=args.dry_run, keep_temp=args.keep_temp, cache_dir=args.cache_dir,
		clock=args.clock)
	if args.dump_plan:
		project.validate()
		print(yaml.safe_dump(project.plan(), sort_keys=False))
		return
	try:
		result = project.run(on_progress=print_progress)
	except ExportError as exc:
		sys.stderr.write(f"ERROR: {exc}\n")
		sys.exit(1)
	if result is not None and not utils.is_quiet_mode():
		print(f"wrote {result.path} ({result.mime_type}, {result.size} bytes)")


if __name__ == '__main__':
	main()
