"""
LMS blueprint - the infrastructure behind a Moodle deployment on GKE.

Turns an InfraConfig into the plan of resources the deployment needs:
networking, a private GKE cluster with its node service-account roles,
outbound NAT, private service access for Cloud SQL and Filestore, a Redis
cache and an Artifact Registry repository for the Moodle image.
"""

from typing import List

from config import InfraConfig
from models import ProvisioningPlan, ResourceKind, ResourceSpec, make_key
from plan import build_plan

POD_RANGE_NAME = "pod-range-gke-1"
SVC_RANGE_NAME = "svc-range-gke-1"
MYSQL_PEERING_RANGE_NAME = "moodle-managed-range"
FILESTORE_PEERING_RANGE_NAME = "moodle-managed-range-filestore"
SERVICE_NETWORKING_API = "servicenetworking.googleapis.com"
CONTAINER_API = "container.googleapis.com"
ARTIFACT_REGISTRY_API = "artifactregistry.googleapis.com"

NODE_SA_ROLES = [
    "roles/monitoring.metricWriter",
    "roles/monitoring.viewer",
    "roles/logging.logWriter",
    "roles/storage.objectViewer",
    "roles/storage.objectAdmin",
    "roles/artifactregistry.reader",
    "roles/container.admin",
]
CLOUD_BUILD_ROLE = "roles/artifactregistry.writer"


def _service_account(email: str) -> str:
    return f"serviceAccount:{email}"


def _peering_range(name: str, address: str, config: InfraConfig) -> ResourceSpec:
    return ResourceSpec(
        kind=ResourceKind.PEERING_RANGE,
        name=name,
        parameters={
            "global": "",
            "purpose": "VPC_PEERING",
            "addresses": address,
            "prefix-length": "24",
            "description": "Moodle Managed Services",
            "network": config.vpc_name,
        },
        scope={"global": ""},
        depends_on=(make_key(ResourceKind.NETWORK, config.vpc_name),),
    )


def _iam_binding(role: str, member: str, *depends_on: str) -> ResourceSpec:
    return ResourceSpec(
        kind=ResourceKind.IAM_BINDING,
        name=role,
        parameters={"member": member},
        scope={"member": member},
        depends_on=depends_on,
    )


def build_lms_specs(config: InfraConfig) -> List[ResourceSpec]:
    """Return the LMS resource specs in declaration order."""
    network = make_key(ResourceKind.NETWORK, config.vpc_name)
    subnet = make_key(ResourceKind.SUBNET, config.subnet_name)
    cluster = make_key(ResourceKind.CLUSTER, config.gke_name)
    mysql_range = make_key(ResourceKind.PEERING_RANGE, MYSQL_PEERING_RANGE_NAME)
    filestore_range = make_key(
        ResourceKind.PEERING_RANGE, FILESTORE_PEERING_RANGE_NAME
    )
    peering = make_key(ResourceKind.SERVICE_PEERING, SERVICE_NETWORKING_API)
    sql_instance = make_key(ResourceKind.MANAGED_DATABASE, config.mysql_instance_name)
    artifact_repo = make_key(ResourceKind.ARTIFACT_REPO, config.artifact_repo_name)

    node_sa = _service_account(config.node_sa_email)

    specs = [
        # Global address for the ingress load balancer
        ResourceSpec(
            kind=ResourceKind.STATIC_ADDRESS,
            name=config.ingress_address_name,
            parameters={"global": ""},
            scope={"global": ""},
        ),
        ResourceSpec(kind=ResourceKind.SERVICE_API, name=SERVICE_NETWORKING_API),
        ResourceSpec(
            kind=ResourceKind.NETWORK,
            name=config.vpc_name,
            parameters={
                "subnet-mode": "custom",
                "bgp-routing-mode": "regional",
                "mtu": "1460",
            },
        ),
        ResourceSpec(
            kind=ResourceKind.SUBNET,
            name=config.subnet_name,
            parameters={
                "network": config.vpc_name,
                "range": config.subnet_range,
                "stack-type": "IPV4_ONLY",
                "region": config.region,
                "secondary-range": (
                    f"{POD_RANGE_NAME}={config.gke_pod_range},"
                    f"{SVC_RANGE_NAME}={config.gke_svc_range}"
                ),
            },
            scope={"network": config.vpc_name, "region": config.region},
            depends_on=(network,),
        ),
        ResourceSpec(kind=ResourceKind.SERVICE_API, name=CONTAINER_API),
        ResourceSpec(
            kind=ResourceKind.CLUSTER,
            name=config.gke_name,
            parameters={
                "release-channel": "stable",
                "region": config.region,
                "enable-dataplane-v2": "",
                "enable-ip-alias": "",
                "enable-private-nodes": "",
                "enable-private-endpoint": "",
                "enable-master-global-access": "",
                "enable-autoscaling": "",
                "min-nodes": config.gke_min_nodes,
                "max-nodes": config.gke_max_nodes,
                "num-nodes": "1",
                "enable-autorepair": "",
                "monitoring": "SYSTEM",
                "logging": "SYSTEM,WORKLOAD",
                "scopes": "storage-rw,compute-ro",
                "enable-intra-node-visibility": "",
                "machine-type": config.gke_machine_type,
                "network": config.vpc_name,
                "subnetwork": config.subnet_name,
                "addons": (
                    "HttpLoadBalancing,HorizontalPodAutoscaling,"
                    "GcpFilestoreCsiDriver"
                ),
                "master-ipv4-cidr": config.gke_master_ipv4_range,
                "cluster-secondary-range-name": POD_RANGE_NAME,
                "services-secondary-range-name": SVC_RANGE_NAME,
                "enable-master-authorized-networks": "",
                "master-authorized-networks": config.master_authorized_networks,
            },
            scope={"region": config.region},
            depends_on=(subnet, make_key(ResourceKind.SERVICE_API, CONTAINER_API)),
        ),
        *[_iam_binding(role, node_sa, cluster) for role in NODE_SA_ROLES],
        # Outbound connectivity for the private nodes
        ResourceSpec(
            kind=ResourceKind.ROUTER_NAT,
            name=config.nat_router,
            parameters={
                "network": config.vpc_name,
                "asn": "64512",
                "region": config.region,
                "nat:name": config.nat_config,
                "nat:auto-allocate-nat-external-ips": "",
                "nat:nat-all-subnet-ip-ranges": "",
                "nat:enable-logging": "",
                "nat:region": config.region,
            },
            scope={"region": config.region, "nat": config.nat_config},
            depends_on=(network,),
        ),
        _peering_range(
            MYSQL_PEERING_RANGE_NAME,
            config.moodle_mysql_managed_peering_range,
            config,
        ),
        _peering_range(
            FILESTORE_PEERING_RANGE_NAME,
            config.moodle_filestore_managed_peering_range,
            config,
        ),
        # One peering carries both ranges
        ResourceSpec(
            kind=ResourceKind.SERVICE_PEERING,
            name=SERVICE_NETWORKING_API,
            parameters={
                "ranges": f"{MYSQL_PEERING_RANGE_NAME},{FILESTORE_PEERING_RANGE_NAME}",
                "network": config.vpc_name,
            },
            scope={"network": config.vpc_name},
            depends_on=(
                mysql_range,
                filestore_range,
                make_key(ResourceKind.SERVICE_API, SERVICE_NETWORKING_API),
            ),
        ),
        ResourceSpec(
            kind=ResourceKind.MANAGED_DATABASE,
            name=config.mysql_instance_name,
            parameters={
                "database-version": "MYSQL_8_0",
                "cpu": "1",
                "memory": "3840MB",
                "zone": config.zone,
                "network": config.vpc_name,
                "retained-backups-count": "7",
                "enable-bin-log": "",
                "retained-transaction-log-days": "7",
                "maintenance-release-channel": "production",
                "maintenance-window-day": "SUN",
                "maintenance-window-hour": "08",
                "availability-type": "zonal",
                "storage-type": "SSD",
                "storage-auto-increase": "",
                "storage-size": "10GB",
                "backup-start-time": "03:00",
                "database-flags": (
                    "character_set_server=utf8,default_time_zone=-03:00"
                ),
                "root-password": config.mysql_root_password,
            },
            depends_on=(peering,),
        ),
        ResourceSpec(
            kind=ResourceKind.SQL_DATABASE,
            name=config.mysql_db,
            parameters={
                "instance": config.mysql_instance_name,
                "charset": config.mysql_moodle_db_charset,
                "collation": config.mysql_moodle_db_collation,
            },
            scope={"instance": config.mysql_instance_name},
            depends_on=(sql_instance,),
        ),
        ResourceSpec(
            kind=ResourceKind.CACHE,
            name=config.redis_name,
            parameters={
                "size": config.redis_size,
                "network": config.vpc_name,
                "enable-auth": "",
                "maintenance-window-day": "sunday",
                "maintenance-window-hour": "08",
                "redis-version": "redis_6_x",
                "redis-config": "maxmemory-policy=allkeys-lru",
                "region": config.region,
            },
            scope={"region": config.region},
            depends_on=(network,),
        ),
        ResourceSpec(
            kind=ResourceKind.FILE_SHARE,
            name=config.filestore_name,
            parameters={
                "description": "NFS to support Moodle data.",
                "tier": "BASIC_SSD",
                "file-share": f"name=moodleshare,capacity={config.filestore_size}",
                "network": (
                    f"name={config.vpc_name},"
                    f"reserved-ip-range={FILESTORE_PEERING_RANGE_NAME},"
                    "connect-mode=PRIVATE_SERVICE_ACCESS"
                ),
                "zone": config.zone,
            },
            scope={"zone": config.zone},
            depends_on=(peering,),
        ),
        ResourceSpec(kind=ResourceKind.SERVICE_API, name=ARTIFACT_REGISTRY_API),
        ResourceSpec(
            kind=ResourceKind.ARTIFACT_REPO,
            name=config.artifact_repo_name,
            parameters={"location": config.region, "repository-format": "docker"},
            scope={"location": config.region},
            depends_on=(make_key(ResourceKind.SERVICE_API, ARTIFACT_REGISTRY_API),),
        ),
        # Lets Cloud Build push the Moodle image
        _iam_binding(
            CLOUD_BUILD_ROLE,
            _service_account(config.cloud_build_sa_email),
            artifact_repo,
        ),
    ]
    return specs


def build_lms_plan(config: InfraConfig) -> ProvisioningPlan:
    """Build the ordered LMS provisioning plan."""
    return build_plan(build_lms_specs(config))
