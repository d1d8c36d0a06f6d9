"""
Email notification utilities for AD Bulk Provision.

This module provides functionality to send email notifications for
run failures, aborted categories and run summaries.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

APP_NAME = "AD Bulk Provision"


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    try:
        smtp_server = config.get('smtp_server')
        smtp_port = config.get('smtp_port', 587)
        smtp_username = config.get('smtp_username')
        smtp_password = config.get('smtp_password')
        smtp_tls = config.get('smtp_tls', True)

        email_from = config.get('email_from', smtp_username)
        email_to = config.get('email_to', [])

        if not smtp_server:
            logger.error("SMTP server not configured")
            return False

        if not email_to:
            logger.error("No email recipients configured")
            return False

        if isinstance(email_to, str):
            email_to = [email_to]

        logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

        msg = MIMEMultipart()
        msg['From'] = email_from
        msg['To'] = ', '.join(email_to)
        msg['Subject'] = subject
        msg.attach(MIMEText(body, 'plain'))

        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if smtp_tls:
                server.starttls()

        if smtp_username and smtp_password:
            server.login(smtp_username, smtp_password)

        server.sendmail(email_from, email_to, msg.as_string())
        server.quit()

        logger.info(f"Email notification sent successfully: {subject}")
        return True

    except Exception as e:
        logger.error(f"Failed to send email notification: {e}")
        return False


def format_runtime(runtime_seconds: float) -> str:
    """Format a duration as seconds, or minutes and seconds past one minute."""
    if runtime_seconds > 60:
        minutes = int(runtime_seconds // 60)
        seconds = runtime_seconds % 60
        return f"{minutes}m {seconds:.1f}s"
    return f"{runtime_seconds:.2f} seconds"


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for run failures.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    subject = f"{APP_NAME} Alert: {title}"

    body_lines = [
        f"{APP_NAME} Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "Please check the application logs for more detailed information.",
        "",
        f"This is an automated message from {APP_NAME}."
    ])

    return send_email(subject, '\n'.join(body_lines), config)


def send_category_error_notification(
    category: str,
    error_count: int,
    errors: List[str],
    config: Dict[str, Any]
) -> bool:
    """
    Send notification for a category aborted after too many row errors.

    Args:
        category: Manifest category that was aborted
        error_count: Number of errors encountered
        errors: List of error messages
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    subject = f"{APP_NAME} Alert: {category} aborted"

    body_lines = [
        f"{APP_NAME} Category Error Report",
        f"Timestamp: {timestamp}",
        "",
        f"Category: {category}",
        f"Error Count: {error_count}",
        "",
        "Error Details:"
    ]

    # Include up to 10 error messages to avoid overly long emails
    for i, error in enumerate(errors[:10], 1):
        body_lines.append(f"  {i}. {error}")

    if len(errors) > 10:
        body_lines.append(f"  ... and {len(errors) - 10} more errors")

    body_lines.extend([
        "",
        f"The remaining {category} rows were not processed. Later categories still ran.",
        "",
        "Check the application logs and result report for complete details.",
        "",
        f"This is an automated message from {APP_NAME}."
    ])

    return send_email(subject, '\n'.join(body_lines), config)


def send_run_summary(
    run_stats: Dict[str, Any],
    config: Dict[str, Any]
) -> bool:
    """
    Send summary notification for a completed run.

    Args:
        run_stats: Dictionary containing run statistics
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    runtime_str = format_runtime(run_stats.get('runtime_seconds', 0))

    subject = f"{APP_NAME}: Run Completed"
    if run_stats.get('dry_run'):
        subject += " (dry run)"

    body_lines = [
        f"{APP_NAME} Summary Report",
        f"Timestamp: {timestamp}",
        "",
        "Overall Statistics:",
        f"  Total runtime: {runtime_str}",
        f"  Categories processed: {run_stats.get('categories_processed', 0)}",
        f"  Categories aborted: {run_stats.get('categories_aborted', 0)}",
        f"  Rows processed: {run_stats.get('rows_processed', 0)}",
        f"  Rows failed: {run_stats.get('rows_failed', 0)}",
        ""
    ]

    category_details = run_stats.get('category_details', {})
    if category_details:
        body_lines.append("Category Details:")
        for category, category_stats in category_details.items():
            body_lines.append(f"  {category}:")
            body_lines.append(f"    Runtime: {category_stats.get('runtime_seconds', 0):.2f}s")
            for outcome, count in sorted(category_stats.get('outcomes', {}).items()):
                body_lines.append(f"    {outcome}: {count}")
            body_lines.append("")

    body_lines.append(f"This is an automated message from {APP_NAME}.")

    return send_email(subject, '\n'.join(body_lines), config)


def send_directory_connection_failure(
    error_message: str,
    config: Dict[str, Any],
    retry_count: int = 0
) -> bool:
    """
    Send notification for directory connection failures.

    Args:
        error_message: Connection error description
        config: Notification configuration
        retry_count: Number of retries attempted

    Returns:
        True if notification sent successfully
    """
    additional_info = {
        'Component': 'Directory Connection',
        'Retry Attempts': retry_count,
        'Impact': 'Run aborted - no rows processed'
    }

    return send_failure_notification(
        "Directory Connection Failed",
        error_message,
        config,
        additional_info
    )


def test_notification_config(config: Dict[str, Any]) -> bool:
    """
    Test email notification configuration by sending a test email.

    Args:
        config: Notification configuration to test

    Returns:
        True if test email sent successfully
    """
    test_subject = f"{APP_NAME}: Configuration Test"
    test_body = """This is a test email from {}.

If you receive this message, your email notification configuration is working correctly.

Test details:
- SMTP Server: {}
- SMTP Port: {}
- From Address: {}
- Recipients: {}

This is an automated test message.""".format(
        APP_NAME,
        config.get('smtp_server', 'not configured'),
        config.get('smtp_port', 'not configured'),
        config.get('email_from', 'not configured'),
        ', '.join(config.get('email_to', []) if isinstance(config.get('email_to', []), list) else [config['email_to']])
    )

    result = send_email(test_subject, test_body, config)
    if result:
        logger.info("Test notification sent successfully")
    else:
        logger.error("Test notification failed")
    return result
