#!/usr/bin/env python3
"""CLI for the Property Finder back-office."""

import logging
import sys
from functools import wraps
from pathlib import Path

import click

import config
import credentials
import csv_import
import db
import export
import listings
import scheduler
import templating
from errors import PropertyFinderError
from pf_client import PropertyFinderClient
from scraper import PropertyScraper, ScrapeParams


def _client() -> PropertyFinderClient:
    return PropertyFinderClient(publish_url_delay=float(db.get_setting("publish_url_delay", 3.0)))


def reports_errors(func):
    """Print back-office errors as one line and exit non-zero."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PropertyFinderError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose):
    """Property Finder back-office"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    db.init_db()


@cli.command("init-db")
def init_db():
    """Create tables and seed default settings and templates."""
    seeded = templating.seed_default_templates()
    click.echo(f"Database ready at {config.DB_PATH} ({seeded} templates seeded)")


@cli.command()
def accounts():
    """Show configured brokerage accounts."""
    click.echo(f"\n{'Account':<12} {'Name':<14} {'License':<14} {'API key':<8} {'Agents':>6}")
    click.echo("-" * 58)
    for account in config.ACCOUNTS:
        cred = credentials.get_credential(account["id"])
        has_key = "yes" if cred.api_key and cred.api_secret else "no"
        click.echo(
            f"{account['id']:<12} {account['name']:<14} {(cred.license_number or '-'):<14} "
            f"{has_key:<8} {len(cred.agents):>6}"
        )


@cli.command("test-connection")
@click.argument("account_id")
@reports_errors
def test_connection(account_id):
    """Check an account's API credentials and cache its agents."""
    cred = credentials.require_credential(account_id)
    client = _client()
    token = client.authenticate(cred.api_key, cred.api_secret)
    cred.agents = client.get_agents(token)
    credentials.save_credential(cred)
    click.echo(f"Connected. Found {len(cred.agents)} agents:")
    for agent in cred.agents:
        click.echo(f"  {agent.id:>8}  {agent.name}")


@cli.command("import-csv")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@reports_errors
def import_csv(path):
    """Create draft listings from a CSV file."""
    def progress(done, total):
        click.echo(f"\r  {done}/{total}", nl=done == total)

    report = csv_import.import_csv(
        path.read_bytes(),
        row_delay=float(db.get_setting("csv_row_delay", 0.0)),
        progress=progress,
    )
    click.echo(f"\nDone! Rows: {report.processed}, Created: {report.created_count}, "
               f"Failed: {len(report.failures)}")
    for failure in report.failures:
        click.echo(f"  row {failure['row']} ({failure['reference']}): {failure['message']}")


@cli.command("listings")
@click.option("--status", "-s", type=click.Choice(["draft", "live", "failed"]), help="Filter by status")
def list_listings(status):
    """Show stored listings."""
    rows = listings.get_listings_by_status(status) if status else listings.get_all_listings()
    if not rows:
        click.echo("No listings.")
        return

    click.echo(f"\n{'ID':<32} {'Reference':<16} {'Status':<7} {'Price':>12}  Title")
    click.echo("-" * 100)
    for listing in rows:
        click.echo(
            f"{listing.id:<32} {listing.reference[:15]:<16} {listing.status:<7} "
            f"{(listing.price or '-'):>12}  {listing.title[:40]}"
        )
        if listing.status == "failed" and listing.error_message:
            click.echo(f"{'':<32} ! {listing.error_message[:80]}")


@cli.command()
@click.argument("listing_id")
@click.option("--account", "-a", default="galahome", help="Account to publish under")
@click.option("--force", is_flag=True, help="Publish again even if not a draft")
@reports_errors
def publish(listing_id, account, force):
    """Publish a stored listing to Property Finder."""
    cred = credentials.require_credential(account)
    listing = listings.publish_listing(listing_id, cred, _client(), force=force)
    if listing.status == "live":
        click.echo(f"Live: {listing.pf_listing_url}")
    else:
        click.echo(f"Failed: {listing.error_message}")
        sys.exit(1)


@cli.command()
@click.argument("listing_id")
def delete(listing_id):
    """Delete a stored listing."""
    if listings.delete_listing(listing_id):
        click.echo(f"Deleted {listing_id}")
    else:
        click.echo(f"Listing not found: {listing_id}")
        sys.exit(1)


@cli.command()
@click.argument("permit_number")
@click.option("--account", "-a", default="galahome")
@click.option("--license", "license_number", help="Override the account's license number")
@reports_errors
def permit(permit_number, account, license_number):
    """Look up a RERA permit."""
    cred = credentials.require_credential(account)
    client = _client()
    details = client.lookup_permit(client.token_for(cred), permit_number, license_number or cred.license_number)
    if details is None:
        click.echo(f"Permit {permit_number} not found")
        sys.exit(1)
    for key, value in vars(details).items():
        click.echo(f"  {key:<15} {value if value is not None else '-'}")


@cli.command()
@click.argument("query")
@click.option("--account", "-a", default="galahome")
@click.option("--limit", "-n", default=10)
@reports_errors
def locations(query, account, limit):
    """Search Property Finder locations."""
    cred = credentials.require_credential(account)
    client = _client()
    found = client.search_locations(client.token_for(cred), query, limit=limit)
    if not found:
        click.echo("No locations found.")
        return
    for loc in found:
        click.echo(f"  {loc.id:>8}  {loc.full_name}")


@cli.command()
@click.option("--location", "-l", required=True, help="Location id or name")
@click.option("--purpose", type=click.Choice(["for-sale", "for-rent"]), default="for-sale")
@click.option("--property-type", default="")
@click.option("--min-price", type=float)
@click.option("--max-price", type=float)
@click.option("--bedrooms", type=int)
@click.option("--pages", default=1, help="Results pages to generate")
@click.option("--seed", type=int, help="Seed for reproducible results")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="CSV output path")
@click.option("--append/--no-append", default=False, help="Also append to the master list")
@reports_errors
def scrape(location, purpose, property_type, min_price, max_price, bedrooms, pages, seed, output, append):
    """Generate search results and export them to CSV."""
    params = ScrapeParams(
        location=location, purpose=purpose, property_type=property_type,
        min_price=min_price, max_price=max_price, bedrooms=bedrooms, pages=pages,
    )
    scraper = PropertyScraper(page_delay=float(db.get_setting("scraper_page_delay", 0.0)), seed=seed)
    results = scraper.scrape_all(params)

    output = output or Path(export.export_filename(params.location_name))
    output.write_bytes(export.export_csv(results))
    click.echo(f"Wrote {len(results)} listings to {output}")
    if append:
        click.echo(f"Appended {export.append_to_master(results)} to master list")


@cli.command("sync-leads")
@click.option("--account", "-a", "account_ids", multiple=True, help="Limit to these accounts")
def sync_leads(account_ids):
    """Pull leads from Property Finder."""
    result = scheduler.run_sync(list(account_ids) or None)
    if "error" in result:
        click.echo(result["error"])
        sys.exit(1)
    click.echo(f"Done! Accounts: {result['accounts']}, Leads: {result['fetched']}, "
               f"New: {result['new']}, Skipped: {result['skipped']}, Errors: {result['errors']}")


@cli.command()
@click.option("--host", default="127.0.0.1")
@click.option("--port", default=5000, help="Port to serve on")
@click.option("--reload/--no-reload", default=False)
def serve(host, port, reload):
    """Start the API server."""
    import uvicorn
    click.echo(f"Starting back-office on http://{host}:{port}")
    uvicorn.run("app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
