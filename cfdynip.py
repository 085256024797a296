#!/usr/bin/env python
'''A simple Dynamic DNS client for use with Cloudflare hosted zones

(c) 2017-2025 - Jason Burks https://github.com/jburks725

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <http://www.gnu.org/licenses/>.
'''
import sys
import os
import signal
import time
import argparse
import ipaddress
import math
import logging
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import requests
from croniter import croniter
from dotenv import dotenv_values

from cloudflare_api import CloudflareClient, DEFAULT_TIMEOUT, is_success

# Constants
DEFAULT_SCHEDULE = '*/59 * * * *'
IP_ECHO_URL = 'http://checkip.amazonaws.com/'
RECORD_TYPE = 'A'

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


class GracefulKiller:
    def __init__(self):
        self.kill_now = False
        signal.signal(signal.SIGINT, self.exit_gracefully)
        signal.signal(signal.SIGTERM, self.exit_gracefully)

    def exit_gracefully(self, signum, frame):
        self.kill_now = True


class ConfigError(Exception):
    pass


class IPResolutionError(Exception):
    pass


@dataclass(frozen=True)
class DomainTarget:
    name: str
    zone_id: str
    record_id: str


@dataclass(frozen=True)
class Settings:
    '''Everything one cycle needs, read fresh from the environment'''
    domain: str
    api_key: str
    email: str
    ip_echo_url: str = IP_ECHO_URL
    timeout: float = DEFAULT_TIMEOUT
    warn_unmatched: bool = True

    @classmethod
    def from_mapping(cls, env):
        domain = (env.get('DOMAIN') or '').strip()
        api_key = (env.get('API_KEY') or '').strip()
        email = (env.get('EMAIL_KEY') or '').strip()
        missing = [k for k, v in (('DOMAIN', domain), ('API_KEY', api_key), ('EMAIL_KEY', email)) if not v]
        if missing:
            raise ConfigError(f"Missing required setting(s): {', '.join(missing)}")

        try:
            timeout = float(env.get('HTTP_TIMEOUT') or DEFAULT_TIMEOUT)
        except ValueError:
            raise ConfigError(f"HTTP_TIMEOUT must be a number, got {env.get('HTTP_TIMEOUT')!r}")
        if not math.isfinite(timeout) or timeout <= 0:
            raise ConfigError(f"HTTP_TIMEOUT must be a positive number of seconds, got {env.get('HTTP_TIMEOUT')!r}")

        return cls(
            domain=domain,
            api_key=api_key,
            email=email,
            ip_echo_url=(env.get('IP_ECHO_URL') or '').strip() or IP_ECHO_URL,
            timeout=timeout,
            warn_unmatched=(env.get('WARN_UNMATCHED') or 'true').strip().lower() not in ('0', 'false', 'no', 'off'),
        )

    @classmethod
    def load(cls, env_file='.env'):
        '''Layer the process environment over the optional env file'''
        env = {}
        if env_file and os.path.isfile(env_file):
            env.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        else:
            logging.debug(f"No env file found at {env_file}")
        env.update(os.environ)
        return cls.from_mapping(env)


class AddressResolver(Protocol):
    def resolve(self): ...


class DNSProvider(Protocol):
    def fetch_records(self, zone_id): ...

    def update_record(self, record, content): ...


class IPResolver:
    '''Ask a plain-text echo service for our public IPv4 address'''

    def __init__(self, url=IP_ECHO_URL, session=None, timeout=DEFAULT_TIMEOUT):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def resolve(self):
        try:
            response = self.session.get(self.url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise IPResolutionError(f"Error retrieving IP address: {e}") from e

        if not is_success(response):
            raise IPResolutionError(f"Unexpected response code from {self.url}: {response.status_code}")

        ip = response.text.strip()
        if not ip:
            raise IPResolutionError(f"Empty response from {self.url}")
        try:
            ipaddress.IPv4Address(ip)
        except ipaddress.AddressValueError:
            raise IPResolutionError(f"Response from {self.url} is not an IPv4 address: {ip[:64]!r}")

        logging.info(f"Current IP address: {ip}")
        return ip


def parse_targets(raw):
    '''Parse name;zone_id;record_id triples separated by |

    One malformed triple rejects the whole list.
    '''
    if not raw or not raw.strip():
        return []

    targets = []
    for entry in raw.split('|'):
        fields = [f.strip() for f in entry.split(';')]
        if len(fields) != 3 or not all(fields):
            logging.error(f"Invalid domain format {entry.strip()!r}, expected name;zone_id;record_id")
            return []
        targets.append(DomainTarget(*fields))
    return targets


class CycleStatus(enum.Enum):
    COMPLETED = 'completed'
    NO_TARGETS = 'no-targets'
    NO_IP = 'no-ip'
    CONFIG_ERROR = 'config-error'


class TargetStatus(enum.Enum):
    UP_TO_DATE = 'up-to-date'
    UPDATED = 'updated'
    UPDATE_FAILED = 'update-failed'
    FETCH_FAILED = 'fetch-failed'
    NOT_FOUND = 'not-found'


@dataclass(frozen=True)
class TargetOutcome:
    target: DomainTarget
    status: TargetStatus
    reason: str = ''
    record: Optional[object] = None


@dataclass
class CycleReport:
    status: CycleStatus
    ip: Optional[str] = None
    outcomes: list = field(default_factory=list)
    reason: str = ''

    @property
    def updated(self):
        return [o for o in self.outcomes if o.status is TargetStatus.UPDATED]

    @property
    def failed(self):
        return [o for o in self.outcomes if o.status in (TargetStatus.FETCH_FAILED, TargetStatus.UPDATE_FAILED)]


def is_candidate(record, target):
    return record.id == target.record_id and record.zone_id == target.zone_id and record.type == RECORD_TYPE


def reconcile_target(provider: DNSProvider, target, ip, warn_unmatched=True):
    '''Fetch one target's zone and fix its record if it is stale'''
    fetched = provider.fetch_records(target.zone_id)
    if not fetched.ok:
        logging.warning(f"Skipping {target.name}: could not fetch records ({fetched.error})")
        return [TargetOutcome(target, TargetStatus.FETCH_FAILED, fetched.error)]

    outcomes = []
    for record in fetched.records:
        if not is_candidate(record, target):
            continue
        if record.content == ip:
            logging.info(f"{target.name} already points to {ip}")
            outcomes.append(TargetOutcome(target, TargetStatus.UP_TO_DATE, record=record))
            continue

        logging.info(f"Updating {target.name} from {record.content} to {ip}")
        result = provider.update_record(record, ip)
        if result:
            logging.info(f"Update of {target.name} completed")
            outcomes.append(TargetOutcome(target, TargetStatus.UPDATED, record=record))
        else:
            logging.error(f"Update of {target.name} failed: {result.reason}")
            outcomes.append(TargetOutcome(target, TargetStatus.UPDATE_FAILED, result.reason, record))

    if not outcomes:
        message = f"No A record {target.record_id} found in zone {target.zone_id} for {target.name}"
        if warn_unmatched:
            logging.warning(message)
        else:
            logging.debug(message)
        outcomes.append(TargetOutcome(target, TargetStatus.NOT_FOUND, message))
    return outcomes


def run_cycle(resolver: AddressResolver, provider: DNSProvider, targets, warn_unmatched=True):
    '''Resolve our IP and bring every target's A record in line with it'''
    if not targets:
        logging.error("No valid domain targets configured, skipping update")
        return CycleReport(CycleStatus.NO_TARGETS, reason='no valid domain targets')

    try:
        ip = resolver.resolve()
    except IPResolutionError as e:
        logging.warning(f"Could not get IP, skipping this interval: {e}")
        return CycleReport(CycleStatus.NO_IP, reason=str(e))
    if not ip:
        logging.warning("Could not get IP, skipping this interval")
        return CycleReport(CycleStatus.NO_IP, reason='empty IP address')

    report = CycleReport(CycleStatus.COMPLETED, ip=ip)
    for target in targets:
        report.outcomes.extend(reconcile_target(provider, target, ip, warn_unmatched))
    logging.info(f"Cycle complete: {len(report.updated)} updated, {len(report.failed)} failed")
    return report


def update_ip(env_file='.env'):
    '''One scheduled tick: reload configuration, then run a cycle'''
    try:
        settings = Settings.load(env_file)
    except ConfigError as e:
        logging.error(f"Configuration error, skipping update: {e}")
        return CycleReport(CycleStatus.CONFIG_ERROR, reason=str(e))

    targets = parse_targets(settings.domain)
    if not targets:
        logging.error("Domain format is incorrect, skipping update")
        return CycleReport(CycleStatus.CONFIG_ERROR, reason='invalid domain format')
    logging.info(f"Loaded {len(targets)} domain target(s)")

    with requests.Session() as session:
        resolver = IPResolver(settings.ip_echo_url, session=session, timeout=settings.timeout)
        provider = CloudflareClient(settings.api_key, settings.email, session=session, timeout=settings.timeout)
        return run_cycle(resolver, provider, targets, settings.warn_unmatched)


def get_schedule(cli_schedule, env_file='.env'):
    '''The cron expression from the command line, the environment or the env file'''
    if cli_schedule:
        return cli_schedule
    schedule = os.environ.get('SCHEDULE')
    if not schedule and env_file and os.path.isfile(env_file):
        schedule = dotenv_values(env_file).get('SCHEDULE')
    return (schedule or '').strip() or DEFAULT_SCHEDULE


def wait_until(when, killer):
    '''Sleep until the given time, returning early if we were asked to stop'''
    while datetime.now() < when:
        if killer.kill_now:
            return
        time.sleep(1)


def main():
    parser = argparse.ArgumentParser(description="Keep Cloudflare A records pointed at this host's public IP")
    parser.add_argument("--onetime", help="Update the DNS entries and exit", action="store_true")
    parser.add_argument("--env-file", help="Optional .env file re-read before every update", default=".env")
    parser.add_argument("--schedule", help=f"Cron expression for updates (default: {DEFAULT_SCHEDULE})")
    parser.add_argument("--verbose", help="Enable debug logging", action="store_true")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.onetime:
        report = update_ip(args.env_file)
        sys.exit(0 if report.status is CycleStatus.COMPLETED else 1)

    schedule = get_schedule(args.schedule, args.env_file)
    if not croniter.is_valid(schedule):
        logging.error(f"Invalid schedule expression: {schedule}")
        sys.exit(1)

    sleeper = GracefulKiller()
    logging.info(f"Scheduler started with {schedule}")
    # Run once on startup
    update_ip(args.env_file)
    while not sleeper.kill_now:
        next_run = croniter(schedule, datetime.now()).get_next(datetime)
        logging.debug(f"Next update at {next_run:%Y-%m-%d %H:%M:%S}")
        wait_until(next_run, sleeper)
        if sleeper.kill_now:
            break

        update_ip(args.env_file)
        missed = croniter(schedule, next_run).get_next(datetime)
        if missed < datetime.now():
            logging.warning("Update cycle outlasted the schedule period, skipping missed run(s)")

    logging.info("Thank you for using cfdynip. Have a nice day.")


if __name__ == "__main__":
    main()
