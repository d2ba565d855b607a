"""Command-line interface for circulation.

Built with Typer for commands and Rich for output.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import get_config
from .db import get_db
from .db.schemas import BookCreate, BookResponse, CustomerCreate, CustomerResponse
from .lending import (
    AvailabilityGate,
    BookState,
    HistoryReader,
    LendingError,
    LendingLedger,
    LoanCreate,
    SortField,
)

# Create the main app
app = typer.Typer(
    name="circulation",
    help="Lend library books and keep their availability consistent.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
book_app = typer.Typer(help="Manage catalog books.")
app.add_typer(book_app, name="book")
customer_app = typer.Typer(help="Manage library customers.")
app.add_typer(customer_app, name="customer")
loan_app = typer.Typer(help="Borrow and return books.")
app.add_typer(loan_app, name="loan")

# Rich console for pretty output
console = Console()
err_console = Console(stderr=True)


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def parse_date(value: Optional[str], option: str) -> Optional[date]:
    """Parse a YYYY-MM-DD option value, exiting on bad input."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        print_error(f"Invalid date for {option}: {value} (expected YYYY-MM-DD)")
        raise typer.Exit(1)


def fail(error: LendingError) -> None:
    """Report a lending error and exit."""
    print_error(str(error))
    if error.retryable:
        console.print("[dim]This is temporary; try again shortly.[/dim]")
    raise typer.Exit(1)


def format_loan_table(loans: list, title: str = "Loans") -> Table:
    """Create a rich table for displaying loan snapshots."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Book", style="cyan", max_width=30)
    table.add_column("Customer", style="green", max_width=25)
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Returned")

    for loan in loans:
        if loan.return_date:
            returned = loan.return_date.isoformat()
        elif loan.is_overdue:
            returned = "[bold red]OVERDUE[/bold red]"
        else:
            returned = "[yellow]on loan[/yellow]"
        table.add_row(
            str(loan.id)[:8],
            loan.book_title or "Unknown",
            loan.customer_name or "Unknown",
            loan.borrow_date.isoformat(),
            loan.due_date.isoformat(),
            returned,
        )

    return table


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log lending activity"),
) -> None:
    """Configure logging before any command runs."""
    level = "INFO" if verbose else get_config().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


# ============================================================================
# General Commands
# ============================================================================


@app.command()
def init() -> None:
    """Create the database and check configuration."""
    config = get_config()
    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        raise typer.Exit(1)

    get_db()
    print_success(f"Database ready at {config.db_path}")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"circulation version {__version__}")


@app.command("import")
def import_file(
    file: Path = typer.Argument(..., help="JSON file with books, customers and transactions"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate without writing"),
) -> None:
    """Import catalog records and replay historical loans."""
    from .imports import JSONImporter

    importer = JSONImporter(get_db())
    result = importer.import_file(file, dry_run=dry_run)

    style = "green" if result.success else "yellow"
    console.print(Panel(result.summary, title="Dry run" if dry_run else "Import", style=style))
    for message in result.error_messages[:20]:
        print_warning(message)
    if len(result.error_messages) > 20:
        console.print(f"[dim]... and {len(result.error_messages) - 20} more[/dim]")
    if not result.success:
        raise typer.Exit(1)


# ============================================================================
# Book Commands
# ============================================================================


@book_app.command("add")
def book_add(
    title: str = typer.Option(..., "--title", "-t", help="Book title"),
    isbn: str = typer.Option(..., "--isbn", "-i", help="ISBN"),
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Publication year"),
    author: Optional[list[str]] = typer.Option(None, "--author", "-a", help="Author (repeatable)"),
) -> None:
    """Add a book to the catalog."""
    db = get_db()
    if db.get_book_by_isbn(isbn):
        print_warning(f"Book with ISBN {isbn} already exists")
        raise typer.Exit(1)

    try:
        data = BookCreate(title=title, isbn=isbn, publication_year=year, authors=author or [])
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    book = db.create_book(data)
    print_success(f"Added: {book.title}")
    console.print(f"[dim]ID: {book.id}[/dim]")


@book_app.command("list")
def book_list(
    available: bool = typer.Option(False, "--available", help="Only books on the shelf"),
    on_loan: bool = typer.Option(False, "--on-loan", help="Only books on loan"),
) -> None:
    """List catalog books."""
    db = get_db()
    flag = True if available else (False if on_loan else None)
    books = db.list_books(available=flag)

    if not books:
        console.print("[dim]No books found[/dim]")
        return

    table = Table(title="Books", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Authors", style="green", max_width=25)
    table.add_column("ISBN")
    table.add_column("Status")

    for book in (BookResponse.model_validate(b) for b in books):
        table.add_row(
            str(book.id)[:8],
            book.title,
            ", ".join(book.author_names) or "-",
            book.isbn,
            "[green]available[/green]" if book.available else "[yellow]on loan[/yellow]",
        )

    console.print(table)


@book_app.command("status")
def book_status(book_id: str = typer.Argument(..., help="Book ID")) -> None:
    """Show whether a book is available or on loan."""
    gate = AvailabilityGate(get_db())
    try:
        state = gate.state(book_id)
    except LendingError as e:
        fail(e)

    if state == BookState.AVAILABLE:
        console.print("[green]available[/green]")
        return

    loan = HistoryReader(get_db()).open_loan_for_book(book_id)
    console.print("[yellow]on loan[/yellow]")
    if loan:
        console.print(f"[dim]Borrowed by {loan.customer_name}, due {loan.due_date}[/dim]")


# ============================================================================
# Customer Commands
# ============================================================================


@customer_app.command("add")
def customer_add(
    name: str = typer.Option(..., "--name", "-n", help="Customer name"),
    email: str = typer.Option(..., "--email", "-e", help="Email address"),
    no_privileges: bool = typer.Option(
        False, "--no-privileges", help="Register without borrowing rights"
    ),
) -> None:
    """Register a customer."""
    db = get_db()
    if db.get_customer_by_email(email):
        print_warning(f"Customer with email {email} already exists")
        raise typer.Exit(1)

    try:
        data = CustomerCreate(name=name, email=email, privileges=not no_privileges)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    customer = db.create_customer(data)
    print_success(f"Added: {customer.name}")
    console.print(f"[dim]ID: {customer.id}[/dim]")


@customer_app.command("list")
def customer_list() -> None:
    """List customers."""
    customers = get_db().list_customers()

    if not customers:
        console.print("[dim]No customers found[/dim]")
        return

    table = Table(title="Customers", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Name", style="cyan")
    table.add_column("Email", style="green")
    table.add_column("Privileges", justify="center")

    for customer in (CustomerResponse.model_validate(c) for c in customers):
        table.add_row(
            str(customer.id)[:8],
            customer.name,
            customer.email,
            "[green]yes[/green]" if customer.privileges else "[red]no[/red]",
        )

    console.print(table)


@customer_app.command("privileges")
def customer_privileges(
    customer_id: str = typer.Argument(..., help="Customer ID"),
    grant: bool = typer.Option(True, "--grant/--revoke", help="Grant or revoke borrowing rights"),
) -> None:
    """Grant or revoke a customer's borrowing privileges."""
    customer = get_db().set_privileges(customer_id, grant)
    if customer is None:
        print_error(f"Customer not found: {customer_id}")
        raise typer.Exit(1)

    action = "granted to" if grant else "revoked from"
    print_success(f"Borrowing privileges {action} {customer.name}")


# ============================================================================
# Loan Commands
# ============================================================================


@loan_app.command("create")
def loan_create(
    customer_id: str = typer.Argument(..., help="Customer ID"),
    book_id: str = typer.Argument(..., help="Book ID"),
    borrow_date: str = typer.Option(..., "--borrow-date", "-b", help="Borrow date (YYYY-MM-DD)"),
    due_date: str = typer.Option(..., "--due-date", "-d", help="Due date (YYYY-MM-DD)"),
) -> None:
    """Create a loan with explicit borrow and due dates."""
    try:
        data = LoanCreate(
            customer_id=customer_id,
            book_id=book_id,
            borrow_date=parse_date(borrow_date, "--borrow-date"),
            due_date=parse_date(due_date, "--due-date"),
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    try:
        loan = LendingLedger(get_db()).create_loan(data)
    except LendingError as e:
        fail(e)

    print_success(f"Loan created, due {loan.due_date}")
    console.print(f"[dim]Loan ID: {loan.id}[/dim]")


@loan_app.command("borrow")
def loan_borrow(
    customer_id: str = typer.Argument(..., help="Customer ID"),
    book_id: str = typer.Argument(..., help="Book ID"),
    on: Optional[str] = typer.Option(
        None, "--date", "-d", help="Backdated borrow date (YYYY-MM-DD)"
    ),
) -> None:
    """Borrow a book for the standard loan period."""
    borrow_date = parse_date(on, "--date")
    ledger = LendingLedger(get_db())
    try:
        if borrow_date:
            loan = ledger.borrow_with_date(customer_id, book_id, borrow_date)
        else:
            loan = ledger.borrow_now(customer_id, book_id)
    except LendingError as e:
        fail(e)

    print_success(f"Book borrowed, due {loan.due_date}")
    console.print(f"[dim]Loan ID: {loan.id}[/dim]")


@loan_app.command("return")
def loan_return(
    book_id: str = typer.Argument(..., help="Book ID"),
    on: Optional[str] = typer.Option(
        None, "--date", "-d", help="Close every open loan on this date (YYYY-MM-DD)"
    ),
) -> None:
    """Return a book."""
    return_date = parse_date(on, "--date")
    ledger = LendingLedger(get_db())
    try:
        if return_date:
            closed = ledger.return_with_date(book_id, return_date)
        else:
            closed = [ledger.return_by_book(book_id)]
    except LendingError as e:
        fail(e)

    if not closed:
        print_warning("Book had no open loans; nothing changed")
        return
    for loan_id in closed:
        print_success(f"Returned loan {loan_id}")


@loan_app.command("history")
def loan_history(
    customer_id: str = typer.Argument(..., help="Customer ID"),
    page: int = typer.Option(0, "--page", "-p", help="Page number, starting at 0"),
    size: Optional[int] = typer.Option(None, "--size", "-s", help="Loans per page"),
    sort: SortField = typer.Option(SortField.BORROW_DATE, "--sort", help="Sort field"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
) -> None:
    """Show a customer's borrowing history."""
    reader = HistoryReader(get_db())
    try:
        result = reader.view_history(
            customer_id, page=page, page_size=size, sort_field=sort, descending=desc
        )
    except LendingError as e:
        fail(e)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if result.is_empty:
        console.print("[dim]No loans found[/dim]")
        return

    console.print(format_loan_table(result.items, title="Borrowing History"))
    console.print(
        f"[dim]Page {result.page + 1} of {result.total_pages} ({result.total} loans)[/dim]"
    )


@loan_app.command("show")
def loan_show(loan_id: str = typer.Argument(..., help="Loan ID")) -> None:
    """Show a single loan."""
    loan = HistoryReader(get_db()).get_loan(loan_id)
    if loan is None:
        print_error(f"Loan not found: {loan_id}")
        raise typer.Exit(1)

    if loan.return_date:
        status = f"returned {loan.return_date}"
    elif loan.is_overdue:
        status = f"[bold red]overdue by {-loan.days_until_due} days[/bold red]"
    else:
        status = f"on loan, due in {loan.days_until_due} days"
    console.print(Panel(
        f"[bold]{loan.book_title}[/bold] ({loan.book_isbn})\n"
        f"Customer: {loan.customer_name} <{loan.customer_email}>\n"
        f"Borrowed: {loan.borrow_date}  Due: {loan.due_date}\n"
        f"Status: {status}",
        title=f"Loan {loan.id}",
    ))


@loan_app.command("book")
def loan_book(book_id: str = typer.Argument(..., help="Book ID")) -> None:
    """Show every loan of a book."""
    loans = HistoryReader(get_db()).loans_for_book(book_id)
    if not loans:
        console.print("[dim]No loans found[/dim]")
        return
    console.print(format_loan_table(loans, title="Book History"))


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
