import sys

from medjournal.config import load_settings
from medjournal.errors import MedJournalError
from medjournal.orchestrator.workflow import JournalWorkflow, WorkflowState
from medjournal.signer.session import WalletSession, short_address


# Simple ANSI colors for terminal output
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def print_header(text):
    print(f"\n{Colors.HEADER}=== {text} ==={Colors.ENDC}")


def print_step(label, value):
    print(f"{Colors.BOLD}{label}:{Colors.ENDC} {value}")


def print_notifications(workflow, seen):
    for note in workflow.notifications[seen:]:
        color = {"info": Colors.BLUE, "warning": Colors.WARNING}.get(note.level, Colors.FAIL)
        print(f"{color}[{note.level}] {note.message}{Colors.ENDC}")
    return len(workflow.notifications)


def run_demo(text: str):
    settings = load_settings()
    workflow = JournalWorkflow.from_settings(settings)
    seen = 0

    try:
        print_header("CONNECTING WALLET")
        session = WalletSession.connect(settings)
        workflow.connect(session)
        print_step("Owner", short_address(session.owner_identity))
        print_step("Existing entries", len(workflow.entries))

        print_header("CLASSIFYING ENTRY")
        workflow.submit(text)
        seen = print_notifications(workflow, seen)
        if workflow.state != WorkflowState.CLASSIFIED:
            return 1

        analysis = workflow.classification
        print_step("Symptoms", ", ".join(analysis.symptoms))
        print_step("Mood", analysis.mood)
        print_step("Severity", analysis.severity.value)
        print_step("Summary", analysis.summary)
        print_step("Confidence", f"{round(analysis.confidence * 100)}%")

        answer = input("\nSign and record this entry? [y/N] ").strip().lower()
        if answer != "y":
            workflow.discard()
            print("Draft discarded.")
            return 0

        print_header("SIGNING AND PERSISTING")
        entry = workflow.confirm()
        seen = print_notifications(workflow, seen)
        if entry is None:
            return 1

        print_step("Entry id", entry.id)
        print_step("Content hash", entry.content_hash)
        print_step("Reference", entry.external_reference)
        if entry.block_reference is not None:
            print_step("Block", f"#{entry.block_reference}")
        return 0

    except MedJournalError as e:
        print(f"{Colors.FAIL}[!] {e.user_message} ({type(e).__name__}){Colors.ENDC}")
        return 1
    finally:
        workflow.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("usage: python demo_journal.py \"<journal entry text>\"")
        sys.exit(2)
    sys.exit(run_demo(sys.argv[1]))
