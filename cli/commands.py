import time
from urllib.parse import urljoin

import click
import requests

# Configuration
API_BASE_URL = "http://localhost:5000"
TIMEOUT = 5  # seconds
ALGORITHMS = ["first-fit", "best-fit", "worst-fit"]


def make_api_url(server, endpoint):
    """Construct full API URL"""
    return urljoin(server, endpoint)


def print_response(response):
    """Print API response in a readable format"""
    try:
        data = response.json()
    except ValueError:
        click.echo(f"Raw response: {response.text}")
        return
    if isinstance(data, dict):
        for key, value in data.items():
            if key == "success":
                continue
            click.echo(f"{key.capitalize()}: {value}")
    else:
        click.echo(data)


def check_api_health(server):
    """Check if API server is reachable"""
    try:
        response = requests.get(make_api_url(server, "/api/stats"), timeout=TIMEOUT)
        return response.status_code == 200
    except requests.exceptions.RequestException:
        return False


def call_api(ctx, method, endpoint, ok_message, **kwargs):
    """Send a request and report the outcome. Returns the decoded body on success."""
    server = ctx.obj["server"]
    try:
        response = requests.request(method, make_api_url(server, endpoint), timeout=TIMEOUT, **kwargs)
    except requests.exceptions.ConnectionError:
        click.secho("❌ Failed to connect to API server", fg="red")
        click.echo(f"Please check if the server is running at {server}")
        return None
    except requests.exceptions.Timeout:
        click.secho("❌ Request timed out", fg="red")
        click.echo("The API server is not responding in a timely manner")
        return None
    except requests.exceptions.RequestException as e:
        click.secho(f"❌ Network error: {str(e)}", fg="red")
        return None

    if response.ok:
        if ok_message:
            click.secho(f"✔ {ok_message}", fg="green")
        try:
            return response.json()
        except ValueError:
            click.echo(f"Raw response: {response.text}")
            return {}
    click.secho(f"❌ Error: {response.status_code}", fg="red")
    print_response(response)
    return None


def echo_node(node):
    click.secho(f"\n🆔 Node ID: {node['node_id']}", fg="yellow")
    click.echo(f"🔧 Status: {node.get('status', 'unknown')}")
    click.echo(f"💻 CPU Cores: {node.get('cpu_cores', 'N/A')}")
    click.echo(f"🆓 Available CPU: {node.get('available_cpu_cores', 'N/A')}")
    click.echo(f"📦 Pods Running: {len(node.get('pods', []))}")
    click.echo(f"❤️ Last Heartbeat: {node.get('last_heartbeat', 'N/A')}")


def echo_pod(pod):
    click.echo(
        f"{pod['pod_id']} | CPU: {pod.get('cpu_requirement')} | Node: {pod.get('node_id') or '-'} | "
        f"Status: {pod.get('status')}"
    )


@click.group()
@click.option("--server", envvar="ORCHESTRATOR_URL", default=API_BASE_URL, show_default=True, help="API server base URL")
@click.pass_context
def cli(ctx, server):
    """Cluster orchestrator CLI"""
    ctx.ensure_object(dict)
    ctx.obj["server"] = server
    if not check_api_health(server):
        click.secho("⚠️  API server is not responding", fg="red")
        click.echo(f"Please ensure the API server is running at {server}")
        click.echo("Start it with: python app.py")


@cli.command()
@click.option("--node-id", required=True, help="Identity of the new node")
@click.option("--cpu-cores", required=True, type=int, help="Number of CPU cores for the node")
@click.pass_context
def add_node(ctx, node_id, cpu_cores):
    """Add a new node to the cluster"""
    if cpu_cores <= 0:
        click.secho("❌ CPU cores must be a positive number", fg="red")
        return
    click.echo("⏳ Adding node to cluster...")
    start_time = time.time()
    data = call_api(ctx, "POST", "/api/nodes", "Node added successfully", json={"node_id": node_id, "cpu_cores": cpu_cores})
    if data is not None:
        click.echo(f"✅ Request completed in {time.time() - start_time:.2f}s")
        echo_node(data["node"])


@cli.command()
@click.pass_context
def list_nodes(ctx):
    """List all nodes in the cluster with details"""
    click.echo("⏳ Fetching cluster nodes...")
    data = call_api(ctx, "GET", "/api/nodes", None)
    if data is None:
        return
    nodes = data.get("nodes", [])
    if not nodes:
        click.echo("ℹ No nodes found in the cluster")
        return
    click.secho("\n🏗 Cluster Node Summary", fg="blue", bold=True)
    click.echo(f"Total Nodes: {len(nodes)}")
    click.secho("=" * 50, fg="blue")
    for node in nodes:
        echo_node(node)
    click.secho("\n" + "=" * 50, fg="blue")


@cli.command()
@click.argument("node_id")
@click.option("--cpu-cores", required=True, type=int, help="New number of CPU cores")
@click.pass_context
def update_node(ctx, node_id, cpu_cores):
    """Change the capacity of a node"""
    data = call_api(ctx, "PUT", f"/api/nodes/{node_id}", "Node updated", json={"cpu_cores": cpu_cores})
    if data is not None:
        echo_node(data["node"])


@cli.command()
@click.argument("node_id")
@click.pass_context
def remove_node(ctx, node_id):
    """Remove an empty node from the cluster"""
    data = call_api(ctx, "DELETE", f"/api/nodes/{node_id}", f"Node {node_id} removed")
    if data is not None and not data.get("cleanup", {}).get("ok", True):
        click.secho(f"⚠ Container cleanup failed: {data['cleanup']['message']}", fg="yellow")


@cli.command()
@click.argument("node_id")
@click.option("--interval", type=float, default=5.0, show_default=True, help="Seconds between heartbeats")
@click.option("--count", type=int, default=1, help="Number of heartbeats to send (0 = forever)")
@click.pass_context
def heartbeat(ctx, node_id, interval, count):
    """Send heartbeats on behalf of a node"""
    sent = 0
    while True:
        data = call_api(ctx, "POST", f"/api/nodes/{node_id}/heartbeat", None)
        if data is None:
            return
        sent += 1
        click.echo(f"[{time.ctime()}] Heartbeat sent for node {node_id}")
        if count and sent >= count:
            return
        time.sleep(interval)


@cli.command()
@click.option("--cpu-required", required=True, type=int, help="CPU cores required for the pod")
@click.pass_context
def launch_pod(ctx, cpu_required):
    """Launch a new pod in the cluster"""
    if cpu_required <= 0:
        click.secho("❌ CPU requirement must be positive", fg="red")
        return
    click.echo(f"⏳ Launching pod with {cpu_required} CPU cores...")
    data = call_api(ctx, "POST", "/api/pods", "Pod launched successfully", json={"cpu_requirement": cpu_required})
    if data is not None:
        echo_pod(data["pod"])


@cli.command()
@click.pass_context
def list_pods(ctx):
    """List all pods"""
    data = call_api(ctx, "GET", "/api/pods", None)
    if data is None:
        return
    pods = data.get("pods", [])
    if not pods:
        click.echo("ℹ No pods found in the cluster")
    for pod in pods:
        echo_pod(pod)


@cli.command()
@click.argument("pod_id")
@click.option("--cpu-required", required=True, type=int, help="New CPU requirement")
@click.pass_context
def update_pod(ctx, pod_id, cpu_required):
    """Change the CPU requirement of a pod"""
    data = call_api(ctx, "PUT", f"/api/pods/{pod_id}", "Pod updated", json={"cpu_requirement": cpu_required})
    if data is not None:
        echo_pod(data["pod"])


@cli.command()
@click.argument("pod_id")
@click.pass_context
def delete_pod(ctx, pod_id):
    """Delete a pod"""
    call_api(ctx, "DELETE", f"/api/pods/{pod_id}", f"Pod {pod_id} deleted")


@cli.command()
@click.argument("pod_id")
@click.pass_context
def reschedule_pod(ctx, pod_id):
    """Move a pod to another node"""
    data = call_api(ctx, "POST", f"/api/pods/{pod_id}/reschedule", "Pod rescheduled")
    if data is not None:
        click.echo(f"{data.get('from_node') or '-'} → {data['to_node']}")


@cli.command()
@click.argument("name", required=False, type=click.Choice(ALGORITHMS))
@click.pass_context
def algorithm(ctx, name):
    """Show or set the scheduling algorithm"""
    if name:
        data = call_api(ctx, "POST", "/api/scheduler/algorithm", None, json={"algorithm": name})
    else:
        data = call_api(ctx, "GET", "/api/scheduler/algorithm", None)
    if data is not None:
        click.echo(f"Scheduling algorithm: {data['algorithm']}")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show cluster statistics"""
    data = call_api(ctx, "GET", "/api/stats", None)
    if data is not None:
        for key, value in data.items():
            if key != "success":
                click.echo(f"{key.replace('_', ' ').capitalize()}: {value}")


if __name__ == "__main__":
    cli()
