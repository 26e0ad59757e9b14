"""Replies to CloudFormation custom resource requests.

Shipped next to every custom resource handler in its Lambda bundle.
"""
import json
import urllib.request

SUCCESS = "SUCCESS"
FAILED = "FAILED"


def send(event, context, status, data=None, physical_id=None, reason=None):
    """PUT the outcome of a request to its pre-signed ResponseURL.

    Args:
        event: The custom resource request.
        context: Lambda context; its log stream is the fallback physical ID and
            is referenced in the failure reason.
        status: SUCCESS or FAILED.
        data: Attributes readable with Fn::GetAtt.
        physical_id: Physical ID of the resource. Defaults to the one in the
            request, then to the log stream name.
        reason: Shown in the stack events on failure.
    """
    log_stream = getattr(context, "log_stream_name", "")
    body = json.dumps({
        "Status": status,
        "Reason": reason or f"See the details in CloudWatch Log Stream: {log_stream}",
        "PhysicalResourceId": physical_id or event.get("PhysicalResourceId") or log_stream,
        "StackId": event["StackId"],
        "RequestId": event["RequestId"],
        "LogicalResourceId": event["LogicalResourceId"],
        "NoEcho": False,
        "Data": data or {},
    }).encode("utf-8")

    print(f"Sending {status} response to CloudFormation")
    req = urllib.request.Request(event["ResponseURL"],
        data=body,
        headers={"content-type": "", "content-length": str(len(body))},
        method="PUT")
    with urllib.request.urlopen(req) as response:
        print(f"Status code: {response.getcode()}")
