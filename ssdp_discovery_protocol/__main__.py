#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from signal import SIGINT, SIGTERM

from ssdp_discovery_protocol.internal_types import *

from ssdp_discovery_protocol import (
    __version__ as pkg_version,
    ProtocolVersion,
    IpVersion,
    SearchTarget,
    SearchOptions,
    NetworkInterface,
    SsdpClient,
    SsdpListener,
    DEFAULT_MAX_WAIT_SECONDS,
    find_network_interface,
  )

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def _get_version(self) -> ProtocolVersion:
        return ProtocolVersion.parse(self._args.spec_version)

    def _get_ip_version(self) -> IpVersion:
        return IpVersion.V6 if self._args.ipv6 else IpVersion.V4

    def _get_interface(self) -> Optional[NetworkInterface]:
        name: Optional[str] = self._args.interface
        if name is None:
            return None
        try:
            return find_network_interface(name)
        except KeyError as e:
            raise CmdExitError(1, f"Unknown network interface: {name}") from e

    def _get_target(self) -> SearchTarget:
        target: str = self._args.target
        try:
            return SearchTarget.parse(target)
        except ValueError:
            pass
        # a bare "<type>:<version>" is taken as a device type
        type_name, sep, type_version = target.rpartition(':')
        if sep == '' or type_name == '' or ':' in type_name:
            raise CmdExitError(1, f"Unrecognized search target: {target}")
        return SearchTarget.device_by_type(type_name, type_version, domain=self._args.domain)

    async def cmd_search(self) -> int:
        options = SearchOptions(
            version=self._get_version(),
            target=self._get_target(),
            interface=self._get_interface(),
            ip_version=self._get_ip_version(),
            max_wait_seconds=self._args.max_wait,
            domain_override=self._args.domain,
          )
        max_responses: int = self._args.max_responses
        async with SsdpClient(options) as client:
            async with client.search(max_responses=max_responses) as search_request:
                async for response in search_request.iter_responses():
                    print(json.dumps(response.to_jsonable(), indent=2, sort_keys=True))
                    sys.stdout.flush()
        return 0

    async def cmd_listen(self) -> int:
        listener = SsdpListener(
            version=self._get_version(),
            interface=self._get_interface(),
            ip_version=self._get_ip_version(),
          )
        loop = asyncio.get_running_loop()
        if not self._provide_traceback:
            for signal in (SIGINT, SIGTERM):
                loop.add_signal_handler(signal, listener.stop)
        try:
            async with listener:
                async for advertisement in listener:
                    print(json.dumps(advertisement.to_jsonable(), indent=2, sort_keys=True))
                    sys.stdout.flush()
        finally:
            if not self._provide_traceback:
                for signal in (SIGINT, SIGTERM):
                    loop.remove_signal_handler(signal)
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the ssdp command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(prog="ssdp", description="Discover UPnP devices and services with SSDP.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')

        def add_common_arguments(subparser: argparse.ArgumentParser) -> None:
            subparser.add_argument('-i', '--interface', default=None,
                            help='''The network interface to use. Default: all multicast-capable interfaces''')
            subparser.add_argument('-6', '--ipv6', action='store_true', default=False,
                            help='''Use IPv6 instead of IPv4''')
            subparser.add_argument('-V', '--spec-version', dest='spec_version', default='1.0',
                            choices=['1.0', '1.1', '2.0'],
                            help='''The UPnP Device Architecture version to use. Default: 1.0''')

        # ======================= search

        parser_search = subparsers.add_parser('search', description="Search for UPnP devices and services")
        parser_search.add_argument('-s', '--target', default="upnp:rootdevice",
                            help='''The search target; e.g., "ssdp:all", "uuid:<id>", "urn:<domain>:device:<type>:<ver>",
                                    or "<type>:<ver>" for a device type. Default: "upnp:rootdevice"''')
        parser_search.add_argument('-d', '--domain', default=None,
                            help='''The domain to use for device and service type targets. Default: schemas-upnp-org''')
        parser_search.add_argument('-w', '--max-wait', dest='max_wait', type=int, default=DEFAULT_MAX_WAIT_SECONDS,
                            help=f'''The amount of time to wait for responses, in seconds (1-5). Default: {DEFAULT_MAX_WAIT_SECONDS}''')
        parser_search.add_argument('--max-responses', type=int, default=0,
                            help='The maximum number of responses to return. Default: 0 (no limit)')
        add_common_arguments(parser_search)
        parser_search.set_defaults(func=self.cmd_search)

        # ======================= listen

        parser_listen = subparsers.add_parser('listen', description="Listen for device advertisements")
        add_common_arguments(parser_listen)
        parser_listen.set_defaults(func=self.cmd_listen)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"ssdp: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"ssdp: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
